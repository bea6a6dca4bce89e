"""Error taxonomy for the expense pipeline.

Every error carries a ``retryable`` flag read by the step runner and an
optional ``step`` naming where it surfaced.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    retryable = False

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"[{self.step}] {self.message}"
        return self.message


class ParseError(PipelineError):
    """Raw bytes are not a usable email message."""


class TextExtractionError(PipelineError):
    """An attachment could not be turned into text (e.g. corrupt PDF)."""


class NoContentError(PipelineError):
    """Nothing to send to the model and empty-content calls are disabled."""


class ModelCallError(PipelineError):
    """Transport, provider or decoding failure of the model call."""

    retryable = True


class ExpenseValidationError(PipelineError):
    """Model output failed schema validation."""

    retryable = True

    def __init__(self, field: str, message: str, step: Optional[str] = None):
        super().__init__(f"{field}: {message}", step=step)
        self.field = field


class MissingPrerequisiteError(PipelineError):
    """A step depends on an id an earlier step never produced."""


class StepTimeoutError(PipelineError):
    """A single step attempt exceeded its timeout."""

    retryable = True


class StepFailedError(PipelineError):
    """A step exhausted its retry budget."""

    def __init__(self, step: str, attempts: int, cause: BaseException):
        super().__init__(f"failed after {attempts} attempt(s): {cause}", step=step)
        self.attempts = attempts
        self.cause = cause


# ============================================================================
# Store errors
# ============================================================================


class StoreError(PipelineError):
    """Store failure that is not a known constraint or transient error."""


class UniqueViolationError(StoreError):
    """A UNIQUE constraint rejected the write."""


class DuplicateMessageError(UniqueViolationError):
    """processed_emails already holds this message id."""

    def __init__(self, message_id: str, step: Optional[str] = None):
        super().__init__(f"message already recorded: {message_id}", step=step)
        self.message_id = message_id


class ForeignKeyViolationError(StoreError):
    """A FOREIGN KEY constraint rejected the write."""


class ConstraintViolationError(StoreError):
    """A CHECK or NOT NULL constraint rejected the write."""


class InactiveCategoryError(StoreError):
    """Category is unknown or no longer active."""


class TransientStoreError(StoreError):
    """Connection loss, cancellation, deadlock or serialization race."""

    retryable = True
