"""Application factory for the FastAPI app.

Builds the admission pipeline once per application instance and hangs it on
``app.state``. The lifespan only starts and stops the background tasks (the
window evictor and the audit drain), so an app used without its lifespan
still enforces limits.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from gatekeeper.adapters.audit.base import AbstractAuditSink, NullAuditSink
from gatekeeper.adapters.audit.logging_writer import LoggingAuditWriter
from gatekeeper.adapters.audit.queue_sink import QueueAuditSink
from gatekeeper.adapters.history.base import AbstractRequestHistory
from gatekeeper.adapters.history.in_memory import InMemoryRequestHistory
from gatekeeper.adapters.rate_limit.in_memory import ShardedWindowStore
from gatekeeper.api.routes import health_router, limits_router
from gatekeeper.core.config import Settings, settings as default_settings
from gatekeeper.core.exception_handlers import setup_exception_handlers
from gatekeeper.core.logging import configure_logging
from gatekeeper.core.middleware import request_history_middleware, request_id_middleware
from gatekeeper.core.openapi import apply_openapi_customizations
from gatekeeper.services.abuse_detector import AbuseDetector
from gatekeeper.services.admission import AdmissionController
from gatekeeper.services.evictor import WindowEvictor
from gatekeeper.services.policy_composer import PolicyComposer
from gatekeeper.services.policy_engine import PolicyEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start background housekeeping and guarantee it stops at shutdown."""
    evictor: WindowEvictor = app.state.evictor
    audit = app.state.audit_sink
    if isinstance(audit, QueueAuditSink):
        await audit.start()
    await evictor.start()
    try:
        yield
    finally:
        await evictor.stop()
        if isinstance(audit, QueueAuditSink):
            await audit.stop()


def build_admission(
    app: FastAPI,
    cfg: Settings,
    *,
    history: AbstractRequestHistory | None = None,
) -> AdmissionController:
    """Construct the admission pipeline and attach its parts to ``app.state``.

    Raises:
        PolicyConfigurationError: If a configured tier is invalid; startup
            must not continue.
    """
    audit: AbstractAuditSink
    if cfg.audit.enabled:
        audit = QueueAuditSink(LoggingAuditWriter(), maxsize=cfg.audit.queue_size)
    else:
        audit = NullAuditSink()

    store = ShardedWindowStore(shards=cfg.rate_limit.store_shards)
    composer = PolicyComposer.from_settings(cfg.rate_limit)
    engine = PolicyEngine(store)

    recorder = None
    if history is None:
        recorder = InMemoryRequestHistory(max_entries=cfg.abuse.history_max_entries)
        history = recorder

    detector = None
    if cfg.abuse.enabled:
        detector = AbuseDetector.from_settings(cfg.abuse, history, audit=audit)

    app.state.settings = cfg
    app.state.window_store = store
    app.state.audit_sink = audit
    app.state.history_recorder = recorder
    app.state.evictor = WindowEvictor(
        store,
        period_seconds=cfg.rate_limit.eviction_period_seconds,
        grace_seconds=cfg.rate_limit.eviction_grace_seconds,
        history=recorder,
        history_retention_seconds=cfg.abuse.window_seconds,
    )
    controller = AdmissionController(composer, engine, detector=detector, audit=audit)
    app.state.admission = controller
    return controller


def create_app(
    cfg: Settings | None = None,
    *,
    history: AbstractRequestHistory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cfg: Settings to use; defaults to the process-wide settings.
        history: External request-history log; an in-memory log fed by the
            request-history middleware is used when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = cfg or default_settings
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title=cfg.app.title,
        description=(
            "Admission control for the backend: tiered fixed-window rate limits "
            "(per address, per user, per operation and per subscription tier) and "
            "a suspicious-activity detector. Throttled requests get 429 with "
            "X-RateLimit-* and Retry-After headers."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )

    build_admission(app, cfg, history=history)

    # Registration order: the last added middleware runs outermost.
    app.middleware("http")(request_history_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app, cfg.identity)

    logger.info("app.created", extra={"app_env": cfg.app_env})
    return app
