"""Admission dependency for FastAPI routes.

This module wires the admission pipeline into the HTTP layer:

- allowed requests continue with ``X-RateLimit-*`` headers echoed;
- denied requests raise ``AdmissionDeniedError``, rendered as 429 by the
  exception handlers with ``Retry-After`` and a stable reason code.

The pipeline itself is owned by the application (``app.state.admission``),
built in the app factory; there is no module-level limiter state.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response

from gatekeeper.core.errors import AdmissionDeniedError
from gatekeeper.core.identity import build_request_context, settings_for
from gatekeeper.services.admission import ALLOW_ALL, AdmissionController, AdmissionResult

logger = logging.getLogger(__name__)


def get_admission_controller(request: Request) -> AdmissionController:
    """Return the controller owned by the running application."""
    return request.app.state.admission


async def enforce_admission(request: Request, response: Response) -> AdmissionResult:
    """FastAPI dependency enforcing every applicable admission tier.

    Usage:
        @router.get("/protected", dependencies=[Depends(enforce_admission)])

    Raises:
        AdmissionDeniedError: When a tier or the abuse detector rejects the
            request (HTTP 429).
    """
    cfg = settings_for(request).rate_limit
    if not cfg.enabled:
        return ALLOW_ALL

    controller = get_admission_controller(request)
    context = build_request_context(request)
    result = await controller.admit(context)
    request.state.admission = result

    headers = result.headers() if cfg.include_headers else {}

    if result.allowed:
        response.headers.update(headers)
        logger.debug(
            "rate_limit.allowed",
            extra={
                "limit": result.decision.limit if result.decision else None,
                "remaining": result.decision.remaining if result.decision else None,
                "policy": result.decision.policy_name if result.decision else None,
            },
        )
        return result

    retry_after = result.retry_after_seconds or 0
    headers["Retry-After"] = str(retry_after)
    raise AdmissionDeniedError(
        code=result.reason_code or "RATE_LIMIT_EXCEEDED",
        message=result.message or "Too many requests",
        details={"retry_after": retry_after, "policy": result.policy_name or ""},
        retry_after_seconds=retry_after,
        headers=headers,
    )
