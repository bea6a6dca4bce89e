"""Database operations using psycopg (PostgreSQL)."""

import logging
import threading
from contextlib import contextmanager
from importlib import resources
from typing import Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from ..errors import (
    ConstraintViolationError,
    ForeignKeyViolationError,
    StoreError,
    TransientStoreError,
    UniqueViolationError,
)

logger = logging.getLogger(__name__)


def load_schema() -> str:
    """Return the bundled schema.sql."""
    return resources.files(__package__).joinpath("schema.sql").read_text(encoding="utf-8")


def translate_error(error: psycopg.Error) -> StoreError:
    """Map a psycopg error onto the store error kinds.

    Args:
        error: Error raised by psycopg

    Returns:
        StoreError: Unique, foreign-key, other-constraint, transient or generic
    """
    message = str(error).strip() or type(error).__name__
    if isinstance(error, pg_errors.UniqueViolation):
        return UniqueViolationError(message)
    if isinstance(error, pg_errors.ForeignKeyViolation):
        return ForeignKeyViolationError(message)
    if isinstance(error, psycopg.IntegrityError):
        return ConstraintViolationError(message)
    # Connection loss, query cancel, deadlock and serialization failures
    if isinstance(error, psycopg.OperationalError):
        return TransientStoreError(message)
    return StoreError(message)


class DatabaseClient:
    """PostgreSQL database client using psycopg."""

    def __init__(self, database_url: str):
        """Initialize database client.

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None
        # One transaction at a time on the shared connection
        self._lock = threading.RLock()

    def connect(self) -> psycopg.Connection:
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg.connect(
                    self.database_url,
                    row_factory=dict_row,
                    autocommit=False,  # We'll manage transactions explicitly
                )
            except psycopg.Error as e:
                raise translate_error(e) from e
            logger.info("Database connection established")
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    @contextmanager
    def transaction(self):
        """Context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                conn.execute("INSERT INTO ...")
                # Automatically commits on success, rolls back on exception

        psycopg errors leave the block translated into StoreError subclasses.
        Blocks are serialized across threads, since step attempts running in
        worker threads share this connection.

        Yields:
            psycopg.Connection: Database connection object
        """
        with self._lock:
            conn = self.connect()
            try:
                yield conn
                conn.commit()
                logger.debug("Transaction committed")
            except Exception as e:
                if not conn.closed:
                    conn.rollback()
                logger.error(f"Transaction rolled back: {e}")
                if isinstance(e, psycopg.Error):
                    if isinstance(e, psycopg.OperationalError):
                        # Reconnect on the next attempt
                        self.close()
                    raise translate_error(e) from e
                raise

    def initialize(self):
        """Create tables and seed categories if they do not exist."""
        with self.transaction() as conn:
            conn.execute(load_schema())
        logger.info("Database schema initialized")
