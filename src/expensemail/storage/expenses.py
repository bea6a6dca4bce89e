"""expenses: validated expense rows linked to processed_emails."""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import InactiveCategoryError
from ..models import ExpenseFields, ExpenseRecord, derive_expense_status
from .database import DatabaseClient

logger = logging.getLogger(__name__)


class ExpenseStore:
    """Inserts expenses; rows are never updated by the pipeline."""

    def __init__(self, db: DatabaseClient):
        self.db = db

    def resolve_category(self, name: str) -> str:
        """Return the stored spelling of an active category.

        Raises:
            InactiveCategoryError: If no active category has this name
        """
        with self.db.transaction() as conn:
            row = conn.execute("""
                SELECT name FROM categories
                WHERE lower(name) = lower(%s) AND is_active
            """, (name,)).fetchone()
        if row is None:
            raise InactiveCategoryError(f"unknown or inactive category: {name}")
        return row["name"]

    def insert(self, email_id: int, fields: ExpenseFields, is_reimbursable: bool = False) -> int:
        """Insert an expense for a ledger entry.

        Args:
            email_id: processed_emails.id the expense belongs to
            fields: Validated expense fields
            is_reimbursable: Whether the expense enters the approval lifecycle

        Returns:
            int: ID of the expense row; the existing row's ID if the email
                already has an expense

        Raises:
            ForeignKeyViolationError: If the ledger entry does not exist
            ConstraintViolationError: If amount or currency break a CHECK
            InactiveCategoryError: If the category is not active
        """
        category = self.resolve_category(fields.category)
        status = derive_expense_status(is_reimbursable)
        now = datetime.now(timezone.utc)

        with self.db.transaction() as conn:
            row = conn.execute("""
                INSERT INTO expenses (
                    email_id, amount, currency, description, expense_date,
                    category, vendor, is_reimbursable, status,
                    created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (email_id) DO NOTHING
                RETURNING id
            """, (
                email_id,
                fields.amount,
                fields.currency_code,
                fields.description,
                fields.expense_date,
                category,
                fields.vendor,
                is_reimbursable,
                status.value,
                now,
                now,
            )).fetchone()

            if row is None:
                # Another attempt or delivery inserted first
                row = conn.execute(
                    "SELECT id FROM expenses WHERE email_id = %s",
                    (email_id,),
                ).fetchone()
                logger.info(f"Expense id={row['id']} already recorded for email id={email_id}")
                return row["id"]

        expense_id = row["id"]
        logger.info(
            f"Inserted expense id={expense_id} for email id={email_id}: "
            f"{fields.currency_code} {fields.amount} {fields.vendor}"
        )
        return expense_id

    def find_by_email_id(self, email_id: int) -> Optional[ExpenseRecord]:
        """Fetch the expense recorded for a ledger entry, if any."""
        with self.db.transaction() as conn:
            row = conn.execute("""
                SELECT id, email_id, amount, currency, description, expense_date,
                       category, vendor, is_reimbursable, status,
                       created_at, updated_at
                FROM expenses
                WHERE email_id = %s
                ORDER BY id
                LIMIT 1
            """, (email_id,)).fetchone()
        return ExpenseRecord(**row) if row else None
