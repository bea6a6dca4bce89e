"""processed_emails: one row per inbound message."""

import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import DuplicateMessageError, UniqueViolationError
from ..models import EmailLedgerEntry, EmailStatus, ParsedEmail
from .database import DatabaseClient

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, message_id, subject, from_address, received_at,
    processed_at, status, is_reimbursable
"""


class EmailLedger:
    """Tracks each inbound email from pending to processed or failed."""

    def __init__(self, db: DatabaseClient):
        self.db = db

    def insert_pending(self, parsed_email: ParsedEmail, is_reimbursable: bool = False) -> int:
        """Insert a pending row for a message and return its id.

        Args:
            parsed_email: Parsed email to record
            is_reimbursable: Reimbursable flag for the email's expense

        Returns:
            int: ID of the new processed_emails row

        Raises:
            DuplicateMessageError: If the message id is already recorded
        """
        try:
            with self.db.transaction() as conn:
                row = conn.execute("""
                    INSERT INTO processed_emails
                        (message_id, subject, from_address, received_at, status, is_reimbursable)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id
                """, (
                    parsed_email.message_id,
                    parsed_email.subject,
                    parsed_email.from_address,
                    datetime.now(timezone.utc),
                    EmailStatus.PENDING.value,
                    is_reimbursable,
                )).fetchone()
        except UniqueViolationError as e:
            raise DuplicateMessageError(parsed_email.message_id) from e

        email_id = row["id"]
        logger.info(f"Recorded email id={email_id} message_id={parsed_email.message_id}")
        return email_id

    def find_by_message_id(self, message_id: str) -> Optional[EmailLedgerEntry]:
        """Fetch the ledger entry for a message id.

        Args:
            message_id: Email Message-ID header value

        Returns:
            Optional[EmailLedgerEntry]: Entry if found, None otherwise
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM processed_emails WHERE message_id = %s",
                (message_id,),
            ).fetchone()
        return EmailLedgerEntry(**row) if row else None

    def get(self, email_id: int) -> Optional[EmailLedgerEntry]:
        """Fetch a ledger entry by id."""
        with self.db.transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM processed_emails WHERE id = %s",
                (email_id,),
            ).fetchone()
        return EmailLedgerEntry(**row) if row else None

    def mark_processed(self, email_id: int) -> bool:
        """Set status=processed and stamp processed_at.

        Returns:
            bool: False if no row has this id
        """
        with self.db.transaction() as conn:
            cur = conn.execute("""
                UPDATE processed_emails
                SET status = %s, processed_at = %s
                WHERE id = %s
            """, (EmailStatus.PROCESSED.value, datetime.now(timezone.utc), email_id))
            updated = cur.rowcount == 1
        logger.debug(f"mark_processed email id={email_id} updated={updated}")
        return updated

    def mark_failed(self, email_id: int) -> bool:
        """Set status=failed unless the email was already processed.

        Returns:
            bool: Whether a row changed
        """
        with self.db.transaction() as conn:
            cur = conn.execute("""
                UPDATE processed_emails
                SET status = %s
                WHERE id = %s AND status <> %s
            """, (EmailStatus.FAILED.value, email_id, EmailStatus.PROCESSED.value))
            updated = cur.rowcount == 1
        logger.debug(f"mark_failed email id={email_id} updated={updated}")
        return updated
