from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness check, never rate limited.

    Also reports the number of live rate-limit windows and whether the
    background evictor is running, which is enough to spot a leaking store.
    """
    state = request.app.state
    store = getattr(state, "window_store", None)
    evictor = getattr(state, "evictor", None)
    return {
        "status": "ok",
        "rate_limit_keys": len(store) if store is not None else 0,
        "evictor_running": bool(evictor and evictor.running),
    }
