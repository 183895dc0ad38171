"""HTTP middleware: request correlation and request-history capture.

``request_id_middleware`` accepts an incoming X-Request-ID (or generates a
UUID), exposes it through contextvars for log correlation and echoes it with
the request duration.

``request_history_middleware`` appends one ``RequestHistoryEntry`` per
authenticated request to the application's in-memory history log, which is
what the abuse detector reads back.

Usage:
    app.middleware("http")(request_history_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from gatekeeper.adapters.history.base import RequestHistoryEntry
from gatekeeper.core.identity import resolve_identity, settings_for
from gatekeeper.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    header_name = settings_for(request).log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def request_history_middleware(request: Request, call_next) -> Response:
    """Record the outcome of authenticated requests for abuse detection.

    A request counts as failed when it ends with status >= 400 or raises.
    Recording never affects the response.
    """
    recorder = getattr(request.app.state, "history_recorder", None)
    identity, _ = resolve_identity(request)
    if recorder is None or identity is None:
        return await call_next(request)

    failed = True
    try:
        response: Response = await call_next(request)
        failed = response.status_code >= 400
        return response
    finally:
        recorder.record(
            RequestHistoryEntry(
                key=identity,
                source_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                timestamp=time.time(),
                failed=failed,
            )
        )
