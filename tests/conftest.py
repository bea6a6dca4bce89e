"""Shared fixtures: in-memory stand-ins for the store and the model."""

import threading
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Optional

import pytest

from expensemail.config import Config, RedactionConfig, RetryPolicy
from expensemail.errors import (
    ConstraintViolationError,
    DuplicateMessageError,
    ForeignKeyViolationError,
)
from expensemail.models import (
    EmailLedgerEntry,
    EmailStatus,
    ExpenseFields,
    ExpenseRecord,
    ParsedEmail,
    derive_expense_status,
)
from expensemail.pipeline import WorkflowPipeline
from expensemail.steps import InMemoryStepJournal


class FakeLedger:
    """EmailLedger backed by a dict, with the same unique-key behaviour."""

    def __init__(self):
        self.rows: dict[int, EmailLedgerEntry] = {}
        self.insert_calls = 0
        self.finalize_enabled = True
        self._next_id = 1
        self._lock = threading.Lock()

    def insert_pending(self, parsed_email: ParsedEmail, is_reimbursable: bool = False) -> int:
        with self._lock:
            self.insert_calls += 1
            if self.find_by_message_id(parsed_email.message_id) is not None:
                raise DuplicateMessageError(parsed_email.message_id)
            email_id = self._next_id
            self._next_id += 1
            self.rows[email_id] = EmailLedgerEntry(
                id=email_id,
                message_id=parsed_email.message_id,
                subject=parsed_email.subject,
                from_address=parsed_email.from_address,
                received_at=datetime.now(timezone.utc),
                is_reimbursable=is_reimbursable,
            )
            return email_id

    def find_by_message_id(self, message_id: str) -> Optional[EmailLedgerEntry]:
        for row in list(self.rows.values()):
            if row.message_id == message_id:
                return row
        return None

    def get(self, email_id: int) -> Optional[EmailLedgerEntry]:
        return self.rows.get(email_id)

    def mark_processed(self, email_id: int) -> bool:
        if not self.finalize_enabled or email_id not in self.rows:
            return False
        self.rows[email_id] = self.rows[email_id].model_copy(
            update={"status": EmailStatus.PROCESSED, "processed_at": datetime.now(timezone.utc)}
        )
        return True

    def mark_failed(self, email_id: int) -> bool:
        row = self.rows.get(email_id)
        if row is None or row.status == EmailStatus.PROCESSED:
            return False
        self.rows[email_id] = row.model_copy(update={"status": EmailStatus.FAILED})
        return True


class FakeExpenseStore:
    """ExpenseStore enforcing the foreign key, unique email and CHECK constraints."""

    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger
        self.rows: dict[int, ExpenseRecord] = {}
        self.insert_calls = 0
        self._next_id = 1
        self._lock = threading.Lock()

    def insert(self, email_id: int, fields: ExpenseFields, is_reimbursable: bool = False) -> int:
        if email_id not in self.ledger.rows:
            raise ForeignKeyViolationError(f"email {email_id} does not exist")
        if fields.amount <= 0:
            raise ConstraintViolationError("amount must be positive")
        with self._lock:
            self.insert_calls += 1
            existing = self.find_by_email_id(email_id)
            if existing is not None:
                return existing.id
            expense_id = self._next_id
            self._next_id += 1
            self.rows[expense_id] = ExpenseRecord(
                id=expense_id,
                email_id=email_id,
                amount=fields.amount,
                currency=fields.currency_code,
                description=fields.description,
                expense_date=fields.expense_date,
                category=fields.category,
                vendor=fields.vendor,
                is_reimbursable=is_reimbursable,
                status=derive_expense_status(is_reimbursable),
            )
            return expense_id

    def find_by_email_id(self, email_id: int) -> Optional[ExpenseRecord]:
        for row in list(self.rows.values()):
            if row.email_id == email_id:
                return row
        return None


class FakeModel:
    """Model client returning scripted replies; exceptions are raised."""

    def __init__(self, *replies: Any):
        self.replies = list(replies)
        self.requests = []

    def extract_expense(self, request):
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


VALID_REPLY = {
    "vendor": "Acme Corp",
    "expenseDate": "15-03-2024",
    "amountValue": 42.5,
    "currencyCode": "usd",
    "category": "Software",
    "description": "Annual license",
}


def make_email(
    body: Optional[str] = "Invoice from Acme $42 USD",
    message_id: Optional[str] = "<receipt-1@acme.example>",
    sender: Optional[str] = "billing@acme.example",
    subject: str = "Your receipt",
    html: Optional[str] = None,
    attachments: tuple = (),
) -> bytes:
    """Build RFC822 bytes. attachments: (filename, maintype, subtype, data)."""
    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    msg["To"] = "jane@example.com"
    msg["Subject"] = subject
    if message_id:
        msg["Message-ID"] = message_id
    if body is not None:
        msg.set_content(body)
    if html is not None:
        if body is None:
            msg.set_content(html, subtype="html")
        else:
            msg.add_alternative(html, subtype="html")
    for filename, maintype, subtype, data in attachments:
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
    return msg.as_bytes()


def make_pdf(text: str) -> bytes:
    """Build a one-page PDF showing text in Helvetica."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return bytes(out)


@pytest.fixture
def config():
    return Config(
        database_url="postgresql://localhost/test",
        inference_api_url="http://localhost:8000/v1",
        redaction=RedactionConfig(
            payee_name="Jane Doe",
            payee_email="jane@example.com",
            payee_address="1 Main Street",
            payee_postal_code="90210",
        ),
        retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=0, timeout_seconds=5),
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def expenses(ledger):
    return FakeExpenseStore(ledger)


@pytest.fixture
def journal():
    return InMemoryStepJournal()


@pytest.fixture
def make_pipeline(config, ledger, expenses, journal):
    """Factory building a pipeline around the shared fakes."""

    def build(model, **overrides):
        return WorkflowPipeline(
            config=overrides.pop("config", config),
            ledger=ledger,
            expenses=expenses,
            model=model,
            journal=journal,
            sleep=lambda seconds: None,
            **overrides,
        )

    return build
