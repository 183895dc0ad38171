"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any gatekeeper import so the settings
singleton is built for the testing environment.
"""

import os

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest  # noqa: E402

from gatekeeper.adapters.audit.base import AbstractAuditSink, AuditEvent  # noqa: E402


class FakeClock:
    """Deterministic clock; call it like ``time.time``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class RecordingAuditSink(AbstractAuditSink):
    """Keeps emitted events in memory for assertions."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()
