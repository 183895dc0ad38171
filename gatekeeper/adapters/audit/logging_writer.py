"""Audit writer backed by the structured logging pipeline."""

from __future__ import annotations

import logging

from gatekeeper.adapters.audit.base import AbstractAuditWriter, AuditEvent

AUDIT_LOGGER_NAME = "gatekeeper.audit"

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingAuditWriter(AbstractAuditWriter):
    """Write each event as one JSON log line on the ``gatekeeper.audit`` logger.

    Log shippers route this logger to the audit index; the JSON formatter
    applies the same redaction as every other record.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)

    async def write(self, event: AuditEvent) -> None:
        self._logger.log(
            _LEVELS.get(event.severity, logging.INFO),
            f"audit.{event.event_type}",
            extra={
                "event_type": event.event_type,
                "event_data": event.payload,
                "event_timestamp": event.timestamp,
                "severity": event.severity,
            },
        )
