"""Periodic removal of expired rate-limit windows.

Memory stays bounded by the number of keys active within roughly one window
plus the grace period. The sweep walks the store shard by shard under each
shard's own lock, so it never pauses evaluation of keys on other shards.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from gatekeeper.adapters.history.in_memory import InMemoryRequestHistory
from gatekeeper.adapters.rate_limit.base import AbstractWindowStore

logger = logging.getLogger(__name__)


class WindowEvictor:
    """Owns the background sweep task; start/stop are idempotent."""

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        period_seconds: float = 300.0,
        grace_seconds: float = 60.0,
        history: InMemoryRequestHistory | None = None,
        history_retention_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if period_seconds <= 0:
            raise ValueError("period_seconds must be > 0")
        if grace_seconds < 0:
            raise ValueError("grace_seconds must be >= 0")
        self._store = store
        self._period = period_seconds
        self._grace = grace_seconds
        self._history = history
        self._history_retention = history_retention_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: float | None = None) -> int:
        """Evict windows with ``reset_at + grace < now``; returns keys removed.

        Also trims the in-memory request history, if one was given, to the
        retention horizon.
        """
        if now is None:
            now = self._clock()
        removed = self._store.evict_expired(now, self._grace)
        pruned = 0
        if self._history is not None:
            pruned = self._history.prune(now - self._history_retention)
        logger.debug(
            "evictor.sweep",
            extra={"removed": removed, "history_pruned": pruned, "remaining": len(self._store)},
        )
        return removed

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "evictor.started",
            extra={"period_s": self._period, "grace_s": self._grace},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("evictor.stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._period)
            try:
                self.sweep()
            except Exception:
                logger.exception("evictor.sweep_failed")
