"""Configuration management for the expense pipeline."""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RetryPolicy:
    """Per-step retry budget.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_seconds: Fixed delay between attempts
        timeout_seconds: Wall-clock limit for a single attempt
    """

    max_attempts: int = 3
    backoff_seconds: float = 2.0
    timeout_seconds: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass(frozen=True)
class RedactionConfig:
    """Literal personal values replaced before text leaves the process."""

    payee_name: Optional[str] = None
    payee_email: Optional[str] = None
    payee_address: Optional[str] = None
    payee_postal_code: Optional[str] = None

    def replacements(self) -> list[tuple[str, str]]:
        """Return (literal, placeholder) pairs in application order.

        Unset or empty literals are skipped.
        """
        pairs = [
            (self.payee_name, "Payee Name"),
            (self.payee_email, "Payee Email"),
            (self.payee_address, "Payee Address"),
            (self.payee_postal_code, "Payee Postal Code"),
        ]
        return [(literal, label) for literal, label in pairs if literal]


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    # Database
    database_url: str

    # Inference
    inference_api_url: str
    inference_model: str = "Qwen/Qwen3-8B-FP8"
    inference_api_key: str = "not-needed"

    # Redaction
    redaction: RedactionConfig = field(default_factory=RedactionConfig)

    # Step execution
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    step_policies: dict[str, RetryPolicy] = field(default_factory=dict)

    # Classification
    expenses_reimbursable: bool = False
    skip_empty_content: bool = False

    def policy_for(self, step_name: str) -> RetryPolicy:
        """Retry policy for a step, falling back to the default policy."""
        return self.step_policies.get(step_name, self.retry_policy)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ValueError: If required environment variables are missing
        """
        required_vars = [
            "DATABASE_URL",
            "INFERENCE_API_URL",
        ]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        retry_policy = RetryPolicy(
            max_attempts=int(os.getenv("STEP_MAX_ATTEMPTS", "3")),
            backoff_seconds=float(os.getenv("STEP_BACKOFF_SECONDS", "2")),
            timeout_seconds=float(os.getenv("STEP_TIMEOUT_SECONDS", "30")),
        )
        model_policy = RetryPolicy(
            max_attempts=retry_policy.max_attempts,
            backoff_seconds=retry_policy.backoff_seconds,
            timeout_seconds=float(os.getenv("MODEL_TIMEOUT_SECONDS", "120")),
        )

        return cls(
            database_url=os.getenv("DATABASE_URL"),
            inference_api_url=os.getenv("INFERENCE_API_URL"),
            inference_model=os.getenv("INFERENCE_MODEL", "Qwen/Qwen3-8B-FP8"),
            inference_api_key=os.getenv("INFERENCE_API_KEY", "not-needed"),
            redaction=RedactionConfig(
                payee_name=os.getenv("PAYEE_NAME"),
                payee_email=os.getenv("PAYEE_EMAIL"),
                payee_address=os.getenv("PAYEE_ADDRESS"),
                payee_postal_code=os.getenv("PAYEE_POSTAL_CODE"),
            ),
            retry_policy=retry_policy,
            step_policies={"classify_expense": model_policy},
            expenses_reimbursable=_env_bool("EXPENSES_REIMBURSABLE", False),
            skip_empty_content=_env_bool("SKIP_EMPTY_CONTENT", False),
        )
