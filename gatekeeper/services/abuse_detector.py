"""Heuristic suspicious-activity detection over recent request history.

Four boolean indicators are computed from the caller's trailing history and
the caller is blocked for a fixed cool-down when at least ``min_indicators``
(default 2) of them hold. No single indicator blocks on its own: one shared
NAT address or one scripted client is not enough.

The check is secondary. It runs after every rate-limit tier has allowed the
request, only for authenticated callers, and fails open when history cannot
be read in time.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import asdict, dataclass
from typing import Callable, Iterable, Sequence

from gatekeeper.adapters.audit.base import (
    HISTORY_LOOKUP_FAILED_EVENT,
    SUSPICIOUS_ACTIVITY_EVENT,
    AbstractAuditSink,
    AuditEvent,
    NullAuditSink,
)
from gatekeeper.adapters.history.base import AbstractRequestHistory, RequestHistoryEntry
from gatekeeper.core.config import AbuseSettings, split_csv
from gatekeeper.core.errors import HistoryLookupFailure

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT_PATTERNS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "curl",
    "wget",
    "python",
    "java",
    "postman",
    "insomnia",
)


@dataclass(frozen=True)
class SuspicionIndicators:
    rapid_requests: bool = False
    multiple_source_addresses: bool = False
    unusual_user_agent: bool = False
    repeated_failures: bool = False

    @property
    def count(self) -> int:
        return sum(
            (
                self.rapid_requests,
                self.multiple_source_addresses,
                self.unusual_user_agent,
                self.repeated_failures,
            )
        )


@dataclass(frozen=True)
class AbuseAssessment:
    """Outcome of one assessment.

    ``indicators`` is ``None`` when the check was skipped (anonymous caller)
    or failed open.
    """

    blocked: bool
    indicators: SuspicionIndicators | None = None
    retry_after_seconds: int | None = None
    history_size: int = 0

    def __bool__(self) -> bool:
        return self.blocked


NOT_BLOCKED = AbuseAssessment(blocked=False)


class AbuseDetector:
    def __init__(
        self,
        history: AbstractRequestHistory,
        *,
        audit: AbstractAuditSink | None = None,
        window_seconds: float = 60.0,
        rapid_request_threshold: int = 50,
        source_address_threshold: int = 3,
        failure_threshold: int = 10,
        min_indicators: int = 2,
        block_seconds: int = 300,
        history_timeout_seconds: float = 2.0,
        user_agent_patterns: Iterable[str] = DEFAULT_USER_AGENT_PATTERNS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if not 1 <= min_indicators <= 4:
            raise ValueError("min_indicators must be between 1 and 4")
        if history_timeout_seconds <= 0:
            raise ValueError("history_timeout_seconds must be > 0")
        self._history = history
        self._audit = audit or NullAuditSink()
        self._window_seconds = window_seconds
        self._rapid_request_threshold = rapid_request_threshold
        self._source_address_threshold = source_address_threshold
        self._failure_threshold = failure_threshold
        self._min_indicators = min_indicators
        self._block_seconds = block_seconds
        self._timeout = history_timeout_seconds
        self._user_agent_patterns = tuple(
            re.compile(pattern, re.IGNORECASE) for pattern in user_agent_patterns
        )
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        cfg: AbuseSettings,
        history: AbstractRequestHistory,
        *,
        audit: AbstractAuditSink | None = None,
    ) -> "AbuseDetector":
        return cls(
            history,
            audit=audit,
            window_seconds=cfg.window_seconds,
            rapid_request_threshold=cfg.rapid_request_threshold,
            source_address_threshold=cfg.source_address_threshold,
            failure_threshold=cfg.failure_threshold,
            min_indicators=cfg.min_indicators,
            block_seconds=cfg.block_seconds,
            history_timeout_seconds=cfg.history_timeout_seconds,
            user_agent_patterns=split_csv(cfg.user_agent_patterns),
        )

    def is_unusual_user_agent(self, user_agent: str | None) -> bool:
        if not user_agent:
            return False
        return any(pattern.search(user_agent) for pattern in self._user_agent_patterns)

    def compute_indicators(self, entries: Sequence[RequestHistoryEntry]) -> SuspicionIndicators:
        """Evaluate the four indicators over ``entries`` (oldest first)."""
        addresses = {e.source_address for e in entries if e.source_address}
        failures = sum(1 for e in entries if e.failed)
        latest = max(entries, key=lambda e: e.timestamp) if entries else None
        return SuspicionIndicators(
            rapid_requests=len(entries) > self._rapid_request_threshold,
            multiple_source_addresses=len(addresses) > self._source_address_threshold,
            unusual_user_agent=latest is not None and self.is_unusual_user_agent(latest.user_agent),
            repeated_failures=failures > self._failure_threshold,
        )

    async def _fetch_history(self, identity: str, now: float) -> list[RequestHistoryEntry]:
        try:
            return await asyncio.wait_for(
                self._history.fetch(identity, since=now - self._window_seconds, until=now),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise HistoryLookupFailure(
                code="history_lookup_failed",
                message="request history lookup timed out",
                details={"hint": f"timeout={self._timeout}s"},
            ) from exc
        except Exception as exc:
            raise HistoryLookupFailure(
                code="history_lookup_failed",
                message=f"request history lookup failed: {type(exc).__name__}",
            ) from exc

    async def assess(self, identity: str | None, now: float | None = None) -> AbuseAssessment:
        """Decide whether ``identity`` should be temporarily blocked.

        Args:
            identity: Authenticated identity; ``None`` skips the check.
            now: Evaluation time (UNIX seconds); defaults to the clock.

        Returns:
            AbuseAssessment; ``blocked`` is the verdict.
        """
        if not identity:
            return NOT_BLOCKED
        if now is None:
            now = self._clock()

        try:
            entries = await self._fetch_history(identity, now)
        except HistoryLookupFailure as exc:
            logger.warning(
                "abuse.history_lookup_failed",
                extra={"error_code": exc.code, "error_message": exc.message},
            )
            self._audit.emit(
                AuditEvent(
                    event_type=HISTORY_LOOKUP_FAILED_EVENT,
                    payload={"user_id": identity, "reason": exc.message},
                    timestamp=now,
                    severity="warning",
                )
            )
            return NOT_BLOCKED

        indicators = self.compute_indicators(entries)
        if indicators.count < self._min_indicators:
            return AbuseAssessment(blocked=False, indicators=indicators, history_size=len(entries))

        logger.warning(
            "abuse.blocked",
            extra={
                "indicators": asdict(indicators),
                "suspicious_count": indicators.count,
                "recent_request_count": len(entries),
                "block_seconds": self._block_seconds,
            },
        )
        latest = max(entries, key=lambda e: e.timestamp) if entries else None
        self._audit.emit(
            AuditEvent(
                event_type=SUSPICIOUS_ACTIVITY_EVENT,
                payload={
                    "user_id": identity,
                    "ip": latest.source_address if latest else None,
                    "user_agent": latest.user_agent if latest else None,
                    "indicators": asdict(indicators),
                    "suspicious_count": indicators.count,
                    "recent_request_count": len(entries),
                },
                timestamp=now,
                severity="warning",
            )
        )
        return AbuseAssessment(
            blocked=True,
            indicators=indicators,
            retry_after_seconds=self._block_seconds,
            history_size=len(entries),
        )
