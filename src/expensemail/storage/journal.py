"""workflow_steps: committed step outputs in PostgreSQL."""

import logging
from typing import Optional

from ..steps import StepJournal
from .database import DatabaseClient

logger = logging.getLogger(__name__)


class PostgresStepJournal(StepJournal):
    """Step journal stored in the workflow_steps table."""

    def __init__(self, db: DatabaseClient):
        self.db = db

    def load(self, run_id: str, step_name: str) -> Optional[str]:
        with self.db.transaction() as conn:
            row = conn.execute("""
                SELECT output::text AS output FROM workflow_steps
                WHERE run_id = %s AND step_name = %s
            """, (run_id, step_name)).fetchone()
        return row["output"] if row else None

    def save(self, run_id: str, step_name: str, output: str) -> None:
        # First commit wins; a replayed step never overwrites it
        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO workflow_steps (run_id, step_name, output)
                VALUES (%s, %s, %s::jsonb)
                ON CONFLICT (run_id, step_name) DO NOTHING
            """, (run_id, step_name, output))
        logger.debug(f"Committed step {step_name} for run {run_id}")
