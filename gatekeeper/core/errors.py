"""Application-level exception types.

Only ``PolicyConfigurationError`` is meant to escape as a hard failure, and
only during startup. Everything raised on the admission path is either a
control-flow outcome (``AdmissionDeniedError``) or an infrastructure fault
that callers convert into an allow decision plus an audit record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    policy: str
    field: str
    actual_value: Any
    retry_after: int
    key_hash: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class PolicyConfigurationError(AppError):
    """Raised when a policy is constructed with an invalid window or ceiling."""


class StoreUnavailableError(AppError):
    """Raised when the window store cannot record a request."""


class HistoryLookupFailure(AppError):
    """Raised when request history cannot be fetched in time."""


@dataclass
class AdmissionDeniedError(AppError):
    """A request rejected by a rate-limit tier or the abuse detector.

    This is an expected outcome rather than a fault; the HTTP layer maps it
    to 429 with ``headers`` attached.
    """

    retry_after_seconds: int = 0
    headers: dict[str, str] = field(default_factory=dict)
