"""Derive the ordered set of policies a request must pass.

Tiers, in evaluation order:

1. ``flood``: per-address burst guard (short window).
2. ``global``: per-address volumetric ceiling (long window).
3. ``user``: per-identity ceiling; anonymous callers fall back to address.
4. ``sensitive``: strict per-identity-and-endpoint limit on flagged operations.
5. ``inference``: per-identity limit on resource-intensive operations whose
   ceiling depends on the caller's subscription tier.
6. ``upload`` / ``admin``: per-identity limits on their operations.

Operations are matched by ``OperationRule`` entries such as
``"POST /v1/auth/refresh"`` or ``"/v1/ai/*"``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Iterable, Sequence, Union

from gatekeeper.core.config import RateLimitSettings, split_csv
from gatekeeper.core.context import RequestContext, normalize_path
from gatekeeper.core.errors import PolicyConfigurationError
from gatekeeper.core.policy import (
    ByAuthenticatedUser,
    ByRemoteAddress,
    ByUserAndEndpoint,
    KeyStrategy,
    PolicyConfig,
    describe_strategy,
)

logger = logging.getLogger(__name__)

_HTTP_METHODS = {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"}


@dataclass(frozen=True)
class OperationRule:
    """Glob over the normalized path, optionally restricted to one method."""

    pattern: str
    method: str | None = None

    @classmethod
    def parse(cls, text: str) -> "OperationRule":
        """Parse ``"[METHOD ]<path glob>"``.

        Raises:
            PolicyConfigurationError: If the entry is malformed.
        """
        parts = text.split()
        if len(parts) == 1:
            method, pattern = None, parts[0]
        elif len(parts) == 2 and parts[0].upper() in _HTTP_METHODS:
            method, pattern = parts[0].upper(), parts[1]
        else:
            raise PolicyConfigurationError(
                code="invalid_policy",
                message=f"cannot parse operation rule {text!r}",
                details={"hint": "Use '[METHOD ]/path/glob', e.g. 'POST /v1/auth/refresh'"},
            )
        if not pattern.startswith("/"):
            raise PolicyConfigurationError(
                code="invalid_policy",
                message=f"operation rule path must start with '/': {text!r}",
            )
        return cls(pattern=normalize_path(pattern), method=method)

    def matches(self, request: RequestContext) -> bool:
        if self.method is not None and request.method.upper() != self.method:
            return False
        return fnmatchcase(request.normalized_path, self.pattern)

    def __str__(self) -> str:
        return f"{self.method} {self.pattern}" if self.method else self.pattern


def parse_rules(value: str | Iterable[str] | None) -> tuple[OperationRule, ...]:
    items = split_csv(value) if isinstance(value, str) or value is None else list(value)
    return tuple(OperationRule.parse(item) for item in items)


def _applies(rules: tuple[OperationRule, ...] | None, request: RequestContext) -> bool:
    if rules is None:
        return True
    return any(rule.matches(request) for rule in rules)


@dataclass(frozen=True)
class StaticTier:
    """A policy built once, applied to every request or to matched operations.

    ``rules=None`` means the tier applies to all requests.
    """

    policy: PolicyConfig
    rules: tuple[OperationRule, ...] | None = None

    @property
    def name(self) -> str:
        return self.policy.name

    def applies(self, request: RequestContext) -> bool:
        return _applies(self.rules, request)

    def policy_for(self, request: RequestContext) -> PolicyConfig:
        return self.policy


@dataclass(frozen=True)
class SubscriptionTier:
    """Operation tier whose ceiling is picked from the caller's plan."""

    name: str
    rules: tuple[OperationRule, ...]
    window_seconds: float
    premium_max_requests: int
    free_max_requests: int
    premium_tiers: frozenset[str] = frozenset({"premium"})

    def __post_init__(self) -> None:
        # Fail at startup rather than on the first matching request.
        self.policy_for(RequestContext(subscription_tier=None))
        self.policy_for(RequestContext(subscription_tier=next(iter(self.premium_tiers), None)))

    def applies(self, request: RequestContext) -> bool:
        return _applies(self.rules, request)

    def is_premium(self, request: RequestContext) -> bool:
        tier = (request.subscription_tier or "").strip().lower()
        return bool(tier) and tier in self.premium_tiers

    def policy_for(self, request: RequestContext) -> PolicyConfig:
        if self.is_premium(request):
            return PolicyConfig(
                name=self.name,
                window_seconds=self.window_seconds,
                max_requests=self.premium_max_requests,
                key_strategy=ByAuthenticatedUser(),
                denial_message="AI API rate limit exceeded (Premium)",
            )
        return PolicyConfig(
            name=self.name,
            window_seconds=self.window_seconds,
            max_requests=self.free_max_requests,
            key_strategy=ByAuthenticatedUser(),
            denial_message="AI API rate limit exceeded (Free tier)",
        )


Tier = Union[StaticTier, SubscriptionTier]


class PolicyComposer:
    """Maps a request to the ``(policy, key)`` pairs that must all allow it."""

    def __init__(self, tiers: Sequence[Tier]) -> None:
        names = [tier.name for tier in tiers]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise PolicyConfigurationError(
                code="invalid_policy",
                message=f"duplicate tier names: {sorted(duplicates)}",
            )
        self._tiers = tuple(tiers)

    @property
    def tiers(self) -> tuple[Tier, ...]:
        return self._tiers

    def compose(self, request: RequestContext) -> list[tuple[PolicyConfig, str]]:
        """Ordered ``(policy, key)`` pairs applying to ``request``."""
        composed: list[tuple[PolicyConfig, str]] = []
        for tier in self._tiers:
            if not tier.applies(request):
                continue
            policy = tier.policy_for(request)
            composed.append((policy, policy.derive_key(request)))
        return composed

    def describe(self, request: RequestContext) -> list[dict[str, Any]]:
        """Inspectable summary of the tiers applying to ``request``."""
        return [
            {
                "name": policy.name,
                "window_seconds": policy.window_seconds,
                "max_requests": policy.max_requests,
                "key_strategy": describe_strategy(policy.key_strategy),
            }
            for policy, _ in self.compose(request)
        ]

    @classmethod
    def from_settings(cls, cfg: RateLimitSettings) -> "PolicyComposer":
        """Build the standard tier set from configuration.

        Raises:
            PolicyConfigurationError: If any tier is misconfigured.
        """
        fingerprint = ByRemoteAddress(user_agent_prefix=cfg.user_agent_prefix)
        address_only = ByRemoteAddress(include_user_agent=False)
        per_user = ByAuthenticatedUser(fallback=fingerprint)
        per_endpoint = ByUserAndEndpoint(fallback=fingerprint)
        tiers: list[Tier] = []

        if cfg.flood_enabled:
            tiers.append(
                _static("flood", cfg.flood_window_seconds, cfg.flood_max_requests,
                        address_only, "DDoS protection triggered")
            )
        if cfg.global_enabled:
            tiers.append(
                _static("global", cfg.global_window_seconds, cfg.global_max_requests,
                        address_only, "Global rate limit exceeded")
            )
        if cfg.user_enabled:
            tiers.append(
                _static("user", cfg.user_window_seconds, cfg.user_max_requests,
                        per_user, "User rate limit exceeded")
            )

        sensitive_rules = parse_rules(cfg.sensitive_operations)
        if sensitive_rules:
            tiers.append(
                _static("sensitive", cfg.sensitive_window_seconds, cfg.sensitive_max_requests,
                        per_endpoint, "Strict rate limit exceeded", sensitive_rules)
            )

        inference_rules = parse_rules(cfg.inference_operations)
        if inference_rules:
            tiers.append(
                SubscriptionTier(
                    name="inference",
                    rules=inference_rules,
                    window_seconds=cfg.inference_window_seconds,
                    premium_max_requests=cfg.inference_premium_max_requests,
                    free_max_requests=cfg.inference_free_max_requests,
                    premium_tiers=frozenset(t.lower() for t in split_csv(cfg.premium_tiers)),
                )
            )

        upload_rules = parse_rules(cfg.upload_operations)
        if upload_rules:
            tiers.append(
                _static("upload", cfg.upload_window_seconds, cfg.upload_max_requests,
                        per_user, "Upload rate limit exceeded", upload_rules)
            )

        admin_rules = parse_rules(cfg.admin_operations)
        if admin_rules:
            tiers.append(
                _static("admin", cfg.admin_window_seconds, cfg.admin_max_requests,
                        per_user, "Admin API rate limit exceeded", admin_rules)
            )

        logger.info(
            "policy_composer.configured",
            extra={"tiers": [tier.name for tier in tiers]},
        )
        return cls(tiers)


def _static(
    name: str,
    window_seconds: float,
    max_requests: int,
    key_strategy: KeyStrategy,
    denial_message: str,
    rules: tuple[OperationRule, ...] | None = None,
) -> StaticTier:
    return StaticTier(
        PolicyConfig(
            name=name,
            window_seconds=window_seconds,
            max_requests=max_requests,
            key_strategy=key_strategy,
            denial_message=denial_message,
        ),
        rules=rules,
    )
