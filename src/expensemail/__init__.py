"""Expense extraction pipeline - email bytes in, persisted expense out."""

# Models
from .models import (
    # Database models
    Category,
    EmailLedgerEntry,
    ExpenseRecord,
    # Processing models
    ParsedEmail,
    EmailAttachment,
    ExtractedContent,
    ExpenseFields,
    PipelineResult,
)

# Processing
from .processing import EmailParser, TextNormalizer

# Semantic
from .semantic import ExpenseValidator, InferenceClient, build_extraction_prompt

# Storage
from .storage import DatabaseClient, EmailLedger, ExpenseStore

# Orchestration
from .pipeline import WorkflowPipeline
from .result import Err, Ok
from .steps import DurableStepRunner, InMemoryStepJournal

# Configuration
from .config import Config, RedactionConfig, RetryPolicy

__version__ = "0.1.0"

__all__ = [
    # Models
    "Category",
    "EmailLedgerEntry",
    "ExpenseRecord",
    "ParsedEmail",
    "EmailAttachment",
    "ExtractedContent",
    "ExpenseFields",
    "PipelineResult",
    # Components
    "EmailParser",
    "TextNormalizer",
    "ExpenseValidator",
    "InferenceClient",
    "build_extraction_prompt",
    "DatabaseClient",
    "EmailLedger",
    "ExpenseStore",
    "WorkflowPipeline",
    "DurableStepRunner",
    "InMemoryStepJournal",
    "Ok",
    "Err",
    "Config",
    "RedactionConfig",
    "RetryPolicy",
]
