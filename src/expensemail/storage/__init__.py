"""Storage layer for PostgreSQL operations."""

from .database import DatabaseClient
from .expenses import ExpenseStore
from .journal import PostgresStepJournal
from .ledger import EmailLedger

__all__ = ["DatabaseClient", "EmailLedger", "ExpenseStore", "PostgresStepJournal"]
