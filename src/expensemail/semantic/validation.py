"""Validation of untrusted model output into ExpenseFields."""

import math
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from ..errors import ExpenseValidationError
from ..models import DEFAULT_CATEGORIES, ExpenseFields
from ..result import Err, Ok, Result
from .prompt import DATE_PATTERN

_DATE_RE = re.compile(DATE_PATTERN)
_CURRENCY_RE = re.compile(r"[A-Za-z]{3}")
WIRE_DATE_FORMAT = "%d-%m-%Y"


def parse_wire_date(value: str) -> date:
    """Parse a DD-MM-YYYY date as sent by the model."""
    if not _DATE_RE.match(value):
        raise ValueError("expected DD-MM-YYYY")
    return datetime.strptime(value, WIRE_DATE_FORMAT).date()


def format_wire_date(value: date) -> str:
    """Format a date back to DD-MM-YYYY."""
    return value.strftime(WIRE_DATE_FORMAT)


class ModelReply(BaseModel):
    """Expense fields as named in the model's JSON reply."""

    vendor: str
    expenseDate: date
    amountValue: Decimal
    currencyCode: str
    category: str
    description: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("vendor", mode="before")
    @classmethod
    def _vendor(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @field_validator("expenseDate", mode="before")
    @classmethod
    def _expense_date(cls, value: Any) -> date:
        if not isinstance(value, str):
            raise ValueError("must be a DD-MM-YYYY string")
        return parse_wire_date(value)

    @field_validator("amountValue", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        # bool is an int subclass but not a JSON number
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number")
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError("must be a finite number")
        return Decimal(str(value))

    @field_validator("currencyCode", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        if not isinstance(value, str) or not _CURRENCY_RE.fullmatch(value):
            raise ValueError("must be exactly 3 letters")
        return value.upper()

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any, info: ValidationInfo) -> str:
        categories = (info.context or {}).get("categories", DEFAULT_CATEGORIES)
        if isinstance(value, str):
            for name in categories:
                if name.lower() == value.strip().lower():
                    return name
        raise ValueError(f"must be one of: {', '.join(categories)}")

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("must be a string")
        return value.strip()


class ExpenseValidator:
    """Turn raw model output into ExpenseFields or a field-named failure."""

    def __init__(self, categories: Sequence[str] = DEFAULT_CATEGORIES):
        self.categories = tuple(categories)

    def validate(self, raw: Any) -> Result[ExpenseFields, ExpenseValidationError]:
        """Validate a decoded model reply.

        Args:
            raw: Decoded JSON value returned by the model

        Returns:
            Ok(ExpenseFields) on success, Err(ExpenseValidationError) naming
            the first offending field otherwise
        """
        try:
            reply = ModelReply.model_validate(raw, context={"categories": self.categories})
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or "response"
            message = error["msg"].removeprefix("Value error, ")
            return Err(ExpenseValidationError(field, message))

        return Ok(ExpenseFields(
            vendor=reply.vendor,
            expense_date=reply.expenseDate,
            amount=reply.amountValue,
            currency_code=reply.currencyCode,
            category=reply.category,
            description=reply.description,
        ))
