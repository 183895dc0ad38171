"""Admission pipeline: tiers, then abuse heuristics.

Composition semantics: tiers are evaluated in order and evaluation stops at
the first denial. Later tiers are not charged for a request that was already
rejected.

Every runtime fault inside the pipeline is converted into an allow outcome
and an audit record; the request path is never aborted by the limiter.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable

from gatekeeper.adapters.audit.base import (
    RATE_LIMIT_EXCEEDED_EVENT,
    STORE_UNAVAILABLE_EVENT,
    AbstractAuditSink,
    AuditEvent,
    NullAuditSink,
)
from gatekeeper.adapters.rate_limit.base import Decision
from gatekeeper.core.context import RequestContext
from gatekeeper.core.errors import (
    RATE_LIMIT_EXCEEDED,
    SUSPICIOUS_ACTIVITY,
    StoreUnavailableError,
)
from gatekeeper.core.policy import PolicyConfig
from gatekeeper.services.abuse_detector import AbuseDetector
from gatekeeper.services.policy_composer import PolicyComposer
from gatekeeper.services.policy_engine import PolicyEngine, render_headers

logger = logging.getLogger(__name__)

SUSPICIOUS_ACTIVITY_MESSAGE = "Suspicious activity detected. Please try again later."


def hash_key(key: str) -> str:
    """Hash a limiter key for logs and audit without exposing it."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of the whole pipeline for one request.

    Attributes:
        allowed: Whether the request may proceed.
        reason_code: ``RATE_LIMIT_EXCEEDED`` or ``SUSPICIOUS_ACTIVITY`` when denied.
        message: Client-facing denial message.
        decision: Decision whose numbers are echoed in headers (the denying
            one, or the allowed one with the least remaining budget).
        retry_after_seconds: Seconds to wait when denied.
        policy_name: Tier that denied, if any.
    """

    allowed: bool
    reason_code: str | None = None
    message: str | None = None
    decision: Decision | None = None
    retry_after_seconds: int | None = None
    policy_name: str | None = None

    def headers(self) -> dict[str, str]:
        headers = render_headers(self.decision) if self.decision is not None else {}
        if not self.allowed and self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers

    def body(self) -> dict[str, object]:
        return {
            "success": self.allowed,
            "error": self.message,
            "code": self.reason_code,
            "retryAfter": self.retry_after_seconds or 0,
        }


ALLOW_ALL = AdmissionResult(allowed=True)


class AdmissionController:
    def __init__(
        self,
        composer: PolicyComposer,
        engine: PolicyEngine,
        *,
        detector: AbuseDetector | None = None,
        audit: AbstractAuditSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._composer = composer
        self._engine = engine
        self._detector = detector
        self._audit = audit or NullAuditSink()
        self._clock = clock

    @property
    def composer(self) -> PolicyComposer:
        return self._composer

    @property
    def engine(self) -> PolicyEngine:
        return self._engine

    async def admit(self, request: RequestContext, now: float | None = None) -> AdmissionResult:
        """Run every applicable tier, then the abuse check.

        Args:
            request: Request facts.
            now: Evaluation time (UNIX seconds); defaults to the clock.

        Returns:
            AdmissionResult describing the verdict and headers to echo.
        """
        if now is None:
            now = self._clock()

        try:
            tiers = self._composer.compose(request)
        except Exception as exc:
            self._fail_open(request, None, now, exc)
            return ALLOW_ALL

        tightest: Decision | None = None
        for policy, key in tiers:
            decision = self._check_tier(request, policy, key, now)
            if not decision.allowed:
                self._report_exceeded(request, policy, key, decision, now)
                return AdmissionResult(
                    allowed=False,
                    reason_code=RATE_LIMIT_EXCEEDED,
                    message=policy.denial_message,
                    decision=decision,
                    retry_after_seconds=decision.retry_after_seconds,
                    policy_name=policy.name,
                )
            if tightest is None or decision.remaining < tightest.remaining:
                tightest = decision

        if self._detector is not None and request.is_authenticated:
            try:
                assessment = await self._detector.assess(request.identity, now)
            except Exception:
                # The detector fails open on its own; anything else is a bug.
                logger.exception("abuse.assessment_failed")
            else:
                if assessment.blocked:
                    return AdmissionResult(
                        allowed=False,
                        reason_code=SUSPICIOUS_ACTIVITY,
                        message=SUSPICIOUS_ACTIVITY_MESSAGE,
                        decision=tightest,
                        retry_after_seconds=assessment.retry_after_seconds,
                    )

        return AdmissionResult(allowed=True, decision=tightest)

    def _check_tier(
        self,
        request: RequestContext,
        policy: PolicyConfig,
        key: str,
        now: float,
    ) -> Decision:
        try:
            return self._engine.check_key(key, policy, now=now)
        except Exception as exc:
            self._fail_open(request, policy, now, exc)
            return Decision.open(policy, now)

    def _fail_open(
        self,
        request: RequestContext,
        policy: PolicyConfig | None,
        now: float,
        exc: Exception,
    ) -> None:
        policy_name = policy.name if policy is not None else None
        event = (
            "rate_limit.store_unavailable"
            if isinstance(exc, StoreUnavailableError)
            else "rate_limit.internal_error"
        )
        logger.error(
            event,
            extra={
                "policy": policy_name,
                "error_type": type(exc).__name__,
                "request_path": request.path,
            },
        )
        self._audit.emit(
            AuditEvent(
                event_type=STORE_UNAVAILABLE_EVENT,
                payload={
                    "policy": policy_name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "endpoint": request.path,
                },
                timestamp=now,
                severity="error",
            )
        )

    def _report_exceeded(
        self,
        request: RequestContext,
        policy: PolicyConfig,
        key: str,
        decision: Decision,
        now: float,
    ) -> None:
        key_hash = hash_key(key)
        # Denials are expected traffic, not faults.
        logger.info(
            "rate_limit.exceeded",
            extra={
                "policy": policy.name,
                "key_hash": key_hash,
                "limit": decision.limit,
                "window_s": policy.window_seconds,
                "retry_after_s": decision.retry_after_seconds,
            },
        )
        self._audit.emit(
            AuditEvent(
                event_type=RATE_LIMIT_EXCEEDED_EVENT,
                payload={
                    "policy": policy.name,
                    "key_hash": key_hash,
                    "max_requests": policy.max_requests,
                    "window_seconds": policy.window_seconds,
                    "ip": request.remote_address,
                    "user_agent": request.user_agent,
                    "endpoint": request.path,
                },
                timestamp=now,
                severity="info",
            )
        )
