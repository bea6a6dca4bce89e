"""Core expense pipeline - email bytes in, persisted expense out."""

import hashlib
import logging
import time
from typing import Callable, Optional, Sequence

from .config import Config
from .errors import (
    DuplicateMessageError,
    MissingPrerequisiteError,
    NoContentError,
    PipelineError,
    TransientStoreError,
)
from .metrics import MetricsCollector
from .models import (
    DEFAULT_CATEGORIES,
    EmailStatus,
    ExpenseFields,
    ExpenseRef,
    ExtractedContent,
    LedgerRef,
    ParsedEmail,
    PipelineResult,
    derive_expense_status,
)
from .processing import EmailParser, Redactor, TextNormalizer
from .result import Err, Ok, Result
from .semantic import ExpenseValidator, InferenceClient, build_extraction_prompt
from .steps import DurableStepRunner, StepJournal
from .storage import DatabaseClient, EmailLedger, ExpenseStore, PostgresStepJournal

logger = logging.getLogger(__name__)


class WorkflowPipeline:
    """Runs one inbound email through the durable expense steps.

    Steps run strictly in order; each commits its output to the journal
    before the next starts:

        parse_email -> record_initial_email -> extract_text
            -> classify_expense -> insert_expense -> finalize_status

    All collaborators are passed in; nothing is read from the environment.
    """

    def __init__(
        self,
        config: Config,
        ledger: EmailLedger,
        expenses: ExpenseStore,
        model: InferenceClient,
        journal: StepJournal,
        normalizer: Optional[TextNormalizer] = None,
        categories: Sequence[str] = DEFAULT_CATEGORIES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the pipeline.

        Args:
            config: Application configuration (retry policies, redaction, flags)
            ledger: processed_emails access
            expenses: expenses access
            model: Client for the extraction model
            journal: Store for committed step outputs
            normalizer: Text selection/redaction; built from config if omitted
            categories: Category labels offered to the model
            sleep: Delay function used between step attempts
        """
        self.config = config
        self.ledger = ledger
        self.expenses = expenses
        self.model = model
        self.normalizer = normalizer or TextNormalizer(Redactor(config.redaction))
        self.categories = tuple(categories)
        self.validator = ExpenseValidator(self.categories)
        self.parser = EmailParser()
        self.runner = DurableStepRunner(journal, config.policy_for, sleep=sleep)

    @classmethod
    def from_config(cls, config: Config, db: Optional[DatabaseClient] = None) -> "WorkflowPipeline":
        """Build a pipeline wired to PostgreSQL and the inference endpoint."""
        db = db or DatabaseClient(config.database_url)
        return cls(
            config=config,
            ledger=EmailLedger(db),
            expenses=ExpenseStore(db),
            model=InferenceClient(
                api_url=config.inference_api_url,
                model_name=config.inference_model,
                api_key=config.inference_api_key,
            ),
            journal=PostgresStepJournal(db),
        )

    def run(
        self,
        email_bytes: bytes,
        run_id: Optional[str] = None,
    ) -> Result[PipelineResult, PipelineError]:
        """Process a single email through the full pipeline.

        Args:
            email_bytes: Email in RFC822 format (bytes)
            run_id: Journal key for this run; defaults to the SHA-256 of the
                bytes, so redelivering the same bytes resumes the same run

        Returns:
            Ok(PipelineResult) when the expense is stored (or the email was
            already processed), Err(PipelineError) naming the failed step
        """
        run_id = run_id or hashlib.sha256(email_bytes).hexdigest()
        metrics = MetricsCollector()
        result = PipelineResult(run_id=run_id)
        ledger_ref: Optional[LedgerRef] = None

        try:
            parsed = self._step(run_id, metrics, "parse_email", ParsedEmail, self._parse_email, email_bytes)
            result.message_id = parsed.message_id

            ledger_ref = self._step(
                run_id, metrics, "record_initial_email", LedgerRef, self._record_initial_email, parsed
            )
            result.email_id = ledger_ref.email_id

            if ledger_ref.already_processed:
                logger.info(f"Run {run_id[:12]}: {parsed.message_id} already processed, skipping")
                result.already_processed = True
                result.finalized = True
                result.step_timings = dict(metrics.timings)
                return Ok(result)

            content = self._step(run_id, metrics, "extract_text", ExtractedContent, self._extract_text, parsed)
            fields = self._step(
                run_id, metrics, "classify_expense", ExpenseFields, self._classify_expense, content
            )
            expense = self._step(
                run_id, metrics, "insert_expense", ExpenseRef, self._insert_expense, ledger_ref, fields
            )
            result.expense_id = expense.expense_id
            result.expense_status = expense.status

        except PipelineError as e:
            logger.error(f"Run {run_id[:12]} failed: {e}")
            if ledger_ref is not None:
                self._mark_failed(ledger_ref)
            return Err(e)

        result.finalized = self._finalize(run_id, metrics, ledger_ref)
        result.step_timings = dict(metrics.timings)
        logger.info(
            f"Run {run_id[:12]} done: email id={result.email_id} expense id={result.expense_id} "
            f"in {metrics.total_time:.2f}s"
        )
        return Ok(result)

    def _step(self, run_id, metrics, step_name, output_type, fn, *args):
        metrics.start_timer(step_name)
        try:
            return self.runner.run(run_id, step_name, output_type, fn, *args)
        finally:
            metrics.stop_timer(step_name)

    # ========================================================================
    # Steps
    # ========================================================================

    def _parse_email(self, email_bytes: bytes) -> ParsedEmail:
        return self.parser.parse(email_bytes)

    def _record_initial_email(self, parsed: ParsedEmail) -> LedgerRef:
        """Insert the pending ledger row, or adopt the existing one.

        A duplicate message id means an earlier delivery recorded this email;
        its row is reused instead of failing the run.
        """
        is_reimbursable = self.config.expenses_reimbursable
        try:
            email_id = self.ledger.insert_pending(parsed, is_reimbursable=is_reimbursable)
            return LedgerRef(email_id=email_id, is_reimbursable=is_reimbursable)
        except DuplicateMessageError:
            entry = self.ledger.find_by_message_id(parsed.message_id)
            if entry is None:
                raise TransientStoreError(f"ledger entry for {parsed.message_id} vanished after conflict")
            logger.info(
                f"Message {parsed.message_id} already recorded as id={entry.id} "
                f"(status={entry.status.value})"
            )
            return LedgerRef(
                email_id=entry.id,
                is_reimbursable=entry.is_reimbursable,
                already_processed=entry.status == EmailStatus.PROCESSED,
            )

    def _extract_text(self, parsed: ParsedEmail) -> ExtractedContent:
        return self.normalizer.extract(parsed)

    def _classify_expense(self, content: ExtractedContent) -> ExpenseFields:
        if content.is_empty:
            if self.config.skip_empty_content:
                raise NoContentError("no text to extract an expense from")
            logger.warning("No content extracted, calling the model anyway")

        request = build_extraction_prompt(content.text, self.categories)
        raw = self.model.extract_expense(request)

        outcome = self.validator.validate(raw)
        if isinstance(outcome, Err):
            raise outcome.error
        return outcome.value

    def _insert_expense(self, ledger_ref: LedgerRef, fields: ExpenseFields) -> ExpenseRef:
        if ledger_ref.email_id is None:
            raise MissingPrerequisiteError("no ledger entry id to attach the expense to")

        # A previous attempt may have inserted before failing to commit the step
        existing = self.expenses.find_by_email_id(ledger_ref.email_id)
        if existing is not None:
            logger.info(f"Expense id={existing.id} already exists for email id={ledger_ref.email_id}")
            return ExpenseRef(expense_id=existing.id, status=existing.status)

        expense_id = self.expenses.insert(
            ledger_ref.email_id, fields, is_reimbursable=ledger_ref.is_reimbursable
        )
        return ExpenseRef(expense_id=expense_id, status=derive_expense_status(ledger_ref.is_reimbursable))

    def _finalize_status(self, ledger_ref: LedgerRef) -> bool:
        if ledger_ref.email_id is None:
            raise MissingPrerequisiteError("no ledger entry id to finalize")
        if not self.ledger.mark_processed(ledger_ref.email_id):
            raise MissingPrerequisiteError(f"ledger entry {ledger_ref.email_id} not found")
        return True

    # ========================================================================
    # Best-effort bookkeeping
    # ========================================================================

    def _finalize(self, run_id: str, metrics: MetricsCollector, ledger_ref: LedgerRef) -> bool:
        """Run finalize_status; failures are logged, never raised."""
        try:
            return self._step(run_id, metrics, "finalize_status", bool, self._finalize_status, ledger_ref)
        except PipelineError as e:
            logger.warning(f"Run {run_id[:12]}: could not finalize email status: {e}")
            return False

    def _mark_failed(self, ledger_ref: LedgerRef) -> None:
        if ledger_ref.email_id is None:
            return
        try:
            self.ledger.mark_failed(ledger_ref.email_id)
        except PipelineError as e:
            logger.error(f"Could not mark email id={ledger_ref.email_id} failed: {e}")
