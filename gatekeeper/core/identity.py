"""Identity context for admission checks.

Authentication happens upstream (gateway or auth middleware), which forwards
the verified identity and subscription tier in trusted headers. This module
only reads them; a missing identity means the caller is anonymous.
"""

from __future__ import annotations

import logging

from fastapi import Request

from gatekeeper.core.config import Settings, settings as default_settings
from gatekeeper.core.context import RequestContext

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def settings_for(request: Request) -> Settings:
    """Settings the running application was built with."""
    return getattr(request.app.state, "settings", None) or default_settings


def resolve_identity(request: Request) -> tuple[str | None, str | None]:
    """Return ``(identity, subscription_tier)`` forwarded for ``request``.

    Examples:
        Headers ``X-User-ID: u-1`` and ``X-Subscription-Tier: premium`` give
        ``("u-1", "premium")``; no headers give ``(None, None)``.
    """
    cfg = settings_for(request).identity
    identity = _clean(request.headers.get(cfg.user_header))
    tier = _clean(request.headers.get(cfg.tier_header))
    if tier is not None and identity is None:
        # A tier without an identity cannot be attributed to anyone.
        logger.debug("identity.tier_without_identity", extra={"tier": tier})
        tier = None
    return identity, tier


def build_request_context(request: Request) -> RequestContext:
    """Collect the request facts the admission pipeline needs."""
    identity, tier = resolve_identity(request)
    return RequestContext(
        remote_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        path=request.url.path,
        method=request.method.upper(),
        identity=identity,
        subscription_tier=tier,
    )
