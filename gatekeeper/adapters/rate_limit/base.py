"""Window store interfaces.

Callers depend on this abstraction (not the concrete implementation) and
only ever go through ``evaluate``; there is no separate read-then-write API.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from gatekeeper.core.policy import PolicyConfig


@dataclass
class WindowState:
    """Counter for one key inside the current window.

    Owned by the store; never handed out without copying.
    """

    count: int
    window_start: float
    reset_at: float
    first_seen_at: float


@dataclass(frozen=True)
class Decision:
    """Result of evaluating one request against one policy.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window (``policy.max_requests``).
        remaining: Requests left in the window, never negative.
        reset_at: UNIX epoch seconds when the window resets.
        retry_after_seconds: Whole seconds to wait; only set when denied.
        policy_name: Tier that produced the decision.
        fail_open: True when the store failed and the request was let through.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None = None
    policy_name: str = ""
    fail_open: bool = False

    @classmethod
    def from_state(cls, state: WindowState, policy: PolicyConfig, now: float) -> "Decision":
        allowed = state.count <= policy.max_requests
        retry_after = None
        if not allowed:
            retry_after = max(1, int(math.ceil(state.reset_at - now)))
        return cls(
            allowed=allowed,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - state.count),
            reset_at=state.reset_at,
            retry_after_seconds=retry_after,
            policy_name=policy.name,
        )

    @classmethod
    def open(cls, policy: PolicyConfig, now: float) -> "Decision":
        """Allow decision used when the store is unavailable."""
        return cls(
            allowed=True,
            limit=policy.max_requests,
            remaining=policy.max_requests,
            reset_at=now + policy.window_seconds,
            policy_name=policy.name,
            fail_open=True,
        )


class AbstractWindowStore(ABC):
    """Interface for per-key fixed-window counters."""

    @abstractmethod
    def evaluate(self, key: str, policy: PolicyConfig, now: float) -> Decision:
        """Atomically roll over, increment and judge the window for ``key``.

        Args:
            key: Counter key (already namespaced by the caller).
            policy: Policy providing window length and ceiling.
            now: Current UNIX time in seconds.

        Returns:
            Decision for this request.
        """
        raise NotImplementedError

    @abstractmethod
    def evict_expired(self, now: float, grace_seconds: float) -> int:
        """Remove keys whose ``reset_at + grace_seconds`` is before ``now``.

        Returns:
            Number of removed keys.
        """
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def __contains__(self, key: object) -> bool:
        raise NotImplementedError
