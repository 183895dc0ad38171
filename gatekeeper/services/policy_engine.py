"""Evaluate a request against a single policy and render the outcome."""

from __future__ import annotations

import math
import time
from typing import Any, Callable

from gatekeeper.adapters.rate_limit.base import AbstractWindowStore, Decision
from gatekeeper.core.context import RequestContext
from gatekeeper.core.errors import RATE_LIMIT_EXCEEDED, StoreUnavailableError
from gatekeeper.core.policy import PolicyConfig

LIMIT_HEADER = "X-RateLimit-Limit"
REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"


class PolicyEngine:
    """Thin layer between policies and the window store.

    Derives the counter key from the policy's strategy, delegates the atomic
    check to the store, and translates store allocation failures into
    ``StoreUnavailableError`` so callers can fail open.
    """

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> AbstractWindowStore:
        return self._store

    def check(self, request: RequestContext, policy: PolicyConfig, *, now: float | None = None) -> Decision:
        key = policy.derive_key(request)
        return self.check_key(key, policy, now=now)

    def check_key(self, key: str, policy: PolicyConfig, *, now: float | None = None) -> Decision:
        """Evaluate an already-derived key.

        Raises:
            StoreUnavailableError: If the store could not allocate state.
        """
        if now is None:
            now = self._clock()
        try:
            return self._store.evaluate(key, policy, now)
        except MemoryError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="rate limit store could not record the request",
                details={"policy": policy.name},
            ) from exc


def render_headers(decision: Decision) -> dict[str, str]:
    """Rate-limit response headers for ``decision``.

    Limit, remaining and reset (epoch seconds, rounded up) are always present;
    ``Retry-After`` only when the request was denied.
    """
    headers = {
        LIMIT_HEADER: str(decision.limit),
        REMAINING_HEADER: str(decision.remaining),
        RESET_HEADER: str(int(math.ceil(decision.reset_at))),
    }
    if not decision.allowed and decision.retry_after_seconds is not None:
        headers[RETRY_AFTER_HEADER] = str(decision.retry_after_seconds)
    return headers


def render_denial(decision: Decision, policy: PolicyConfig) -> dict[str, Any]:
    """Client-facing body for a denied request."""
    return {
        "success": False,
        "error": policy.denial_message,
        "code": RATE_LIMIT_EXCEEDED,
        "retryAfter": decision.retry_after_seconds or 0,
    }
