"""Audit interfaces."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

Severity = Literal["info", "warning", "error"]

RATE_LIMIT_EXCEEDED_EVENT = "rate_limit_exceeded"
SUSPICIOUS_ACTIVITY_EVENT = "suspicious_activity_detected"
STORE_UNAVAILABLE_EVENT = "rate_limit_store_unavailable"
HISTORY_LOOKUP_FAILED_EVENT = "history_lookup_failed"


@dataclass(frozen=True)
class AuditEvent:
    """Structured audit record.

    Attributes:
        event_type: Stable event name.
        payload: Free-form event data (JSON-serializable).
        timestamp: UNIX time in seconds.
        severity: Operator-facing importance.
    """

    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    severity: Severity = "info"


class AbstractAuditSink(ABC):
    """Fire-and-forget destination for audit events."""

    @abstractmethod
    def emit(self, event: AuditEvent) -> None:
        """Hand off ``event`` without blocking. Must never raise."""
        raise NotImplementedError


class AbstractAuditWriter(ABC):
    """Persists audit events; may be slow or fail."""

    @abstractmethod
    async def write(self, event: AuditEvent) -> None:
        raise NotImplementedError


class NullAuditSink(AbstractAuditSink):
    """Discards every event (auditing disabled)."""

    def emit(self, event: AuditEvent) -> None:
        return None
