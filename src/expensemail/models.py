"""Pydantic models aligned with PostgreSQL schema and internal processing."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Reference data
# ============================================================================


DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Meals",
    "Travel",
    "Office Supplies",
    "Software",
    "Hardware",
    "Training",
    "Telecom",
    "Other",
)


class EmailStatus(str, Enum):
    """Lifecycle of a processed_emails row."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExpenseStatus(str, Enum):
    """Values of expenses.status."""

    NON_REIMBURSABLE = "non_reimbursable"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"


class ContentSource(str, Enum):
    """Where the text sent to the model came from."""

    ATTACHMENT = "attachment"
    BODY = "body"
    NONE = "none"


def derive_expense_status(is_reimbursable: bool) -> ExpenseStatus:
    """Initial status for a new expense row.

    Matches the status CHECK in schema.sql; approval moves it on from there.
    """
    if not is_reimbursable:
        return ExpenseStatus.NON_REIMBURSABLE
    return ExpenseStatus.PENDING


# ============================================================================
# Database Models (aligned with PostgreSQL schema)
# ============================================================================


class Category(BaseModel):
    """Expense category (seeded by schema.sql)."""

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EmailLedgerEntry(BaseModel):
    """Row of processed_emails tracking one inbound message."""

    id: int
    message_id: str
    subject: Optional[str] = None
    from_address: str
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    status: EmailStatus = EmailStatus.PENDING
    is_reimbursable: bool = False

    model_config = ConfigDict(from_attributes=True)


class ExpenseRecord(BaseModel):
    """Row of expenses linked to a ledger entry."""

    id: int
    email_id: int
    amount: Decimal
    currency: str
    description: Optional[str] = None
    expense_date: date
    category: Optional[str] = None
    vendor: Optional[str] = None
    is_reimbursable: bool = False
    status: ExpenseStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Internal Processing Models (not stored in database)
# ============================================================================


class EmailAttachment(BaseModel):
    """Email attachment with raw data (internal processing)."""

    filename: str
    content_type: str
    data: bytes

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class ParsedEmail(BaseModel):
    """Parsed email data (internal processing)."""

    message_id: str
    subject: str = ""
    from_address: str
    date: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    attachments: tuple[EmailAttachment, ...] = ()

    model_config = ConfigDict(frozen=True)


class LedgerRef(BaseModel):
    """Output of the record step: which ledger row this run writes to."""

    email_id: Optional[int] = None
    is_reimbursable: bool = False
    already_processed: bool = False


class ExtractedContent(BaseModel):
    """Text chosen for the model, after redaction."""

    text: str = ""
    source: ContentSource = ContentSource.NONE

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class ExpenseFields(BaseModel):
    """Validated expense data extracted by the model."""

    vendor: str
    expense_date: date
    amount: Decimal
    currency_code: str
    category: str
    description: str = ""


class ExpenseRef(BaseModel):
    """Output of the insert step."""

    expense_id: int
    status: ExpenseStatus


# ============================================================================
# Pipeline result
# ============================================================================


class PipelineResult(BaseModel):
    """Outcome of a successful pipeline run."""

    run_id: str
    message_id: Optional[str] = None
    email_id: Optional[int] = None
    expense_id: Optional[int] = None
    expense_status: Optional[ExpenseStatus] = None
    already_processed: bool = False
    finalized: bool = False
    step_timings: dict[str, float] = Field(default_factory=dict)
