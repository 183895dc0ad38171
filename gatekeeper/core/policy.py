"""Rate-limit policies and key-derivation strategies.

Key strategies are a closed set of small frozen dataclasses rather than bare
callables so a composed policy set can be printed, compared and asserted on
in tests. ``Custom`` is the escape hatch and still carries a label.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Union

from gatekeeper.core.context import RequestContext
from gatekeeper.core.errors import PolicyConfigurationError

DEFAULT_USER_AGENT_PREFIX = 50
UNKNOWN = "unknown"


@dataclass(frozen=True)
class ByRemoteAddress:
    """Key by client address, optionally fingerprinted with the user agent.

    The user agent is cut to ``user_agent_prefix`` characters so adversarial
    headers cannot blow up key cardinality.
    """

    include_user_agent: bool = True
    user_agent_prefix: int = DEFAULT_USER_AGENT_PREFIX

    def derive(self, request: RequestContext) -> str:
        address = request.remote_address or UNKNOWN
        if not self.include_user_agent:
            return address
        user_agent = (request.user_agent or UNKNOWN)[: self.user_agent_prefix]
        return f"{address}:{user_agent}"


@dataclass(frozen=True)
class ByAuthenticatedUser:
    """Key by identity; anonymous callers fall back to ``fallback``."""

    fallback: ByRemoteAddress = field(default_factory=ByRemoteAddress)

    def derive(self, request: RequestContext) -> str:
        if request.identity:
            return f"user:{request.identity}"
        return self.fallback.derive(request)


@dataclass(frozen=True)
class ByUserAndEndpoint:
    """Key by identity and normalized path (per-operation counters).

    Anonymous callers are told apart by ``fallback`` so they never share a
    bucket with each other.
    """

    fallback: ByRemoteAddress = field(default_factory=ByRemoteAddress)

    def derive(self, request: RequestContext) -> str:
        if request.identity:
            caller = f"user:{request.identity}"
        else:
            caller = self.fallback.derive(request)
        return f"{caller}:{request.normalized_path}"


@dataclass(frozen=True)
class Custom:
    """Key by an arbitrary function of the request."""

    fn: Callable[[RequestContext], str]
    label: str = "custom"

    def derive(self, request: RequestContext) -> str:
        return self.fn(request)


KeyStrategy = Union[ByRemoteAddress, ByAuthenticatedUser, ByUserAndEndpoint, Custom]


@dataclass(frozen=True)
class PolicyConfig:
    """Immutable fixed-window policy.

    Attributes:
        name: Tier label; namespaces keys and tags logs/audit records.
        window_seconds: Window length in seconds.
        max_requests: Requests admitted per key per window.
        key_strategy: How a request maps to a counter key.
        denial_message: Client-facing message when the tier denies.

    Raises:
        PolicyConfigurationError: If ``max_requests < 1`` or the window is
            not a positive, finite duration.
    """

    name: str
    window_seconds: float
    max_requests: int
    key_strategy: KeyStrategy = field(default_factory=ByRemoteAddress)
    denial_message: str = "Too many requests"

    def __post_init__(self) -> None:
        if not self.name:
            raise PolicyConfigurationError(
                code="invalid_policy",
                message="policy name must be a non-empty string",
                details={"field": "name"},
            )
        if isinstance(self.max_requests, bool) or not isinstance(self.max_requests, int) or self.max_requests < 1:
            raise PolicyConfigurationError(
                code="invalid_policy",
                message=f"max_requests must be an integer >= 1 (policy {self.name!r})",
                details={"policy": self.name, "field": "max_requests", "actual_value": self.max_requests},
            )
        if not isinstance(self.window_seconds, (int, float)) or not math.isfinite(self.window_seconds) or self.window_seconds <= 0:
            raise PolicyConfigurationError(
                code="invalid_policy",
                message=f"window_seconds must be > 0 (policy {self.name!r})",
                details={"policy": self.name, "field": "window_seconds", "actual_value": self.window_seconds},
            )

    def derive_key(self, request: RequestContext) -> str:
        """Counter key for ``request`` under this policy, namespaced by tier."""
        return f"{self.name}:{self.key_strategy.derive(request)}"


def describe_strategy(strategy: KeyStrategy) -> str:
    """Short human-readable label for a key strategy."""
    if isinstance(strategy, Custom):
        return f"custom:{strategy.label}"
    if isinstance(strategy, ByRemoteAddress):
        return "address+user_agent" if strategy.include_user_agent else "address"
    if isinstance(strategy, ByAuthenticatedUser):
        return "user"
    return "user+endpoint"
