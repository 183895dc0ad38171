"""Bounded-queue audit sink drained by a background task."""

from __future__ import annotations

import asyncio
import logging

from gatekeeper.adapters.audit.base import AbstractAuditSink, AbstractAuditWriter, AuditEvent

logger = logging.getLogger(__name__)


class QueueAuditSink(AbstractAuditSink):
    """Buffer audit events and write them off the request path.

    ``emit`` only enqueues. When the queue is full the event is dropped and
    counted; a slow or failing writer can never back-pressure requests.
    Events emitted before ``start()`` wait in the queue until the drain task
    runs.
    """

    def __init__(self, writer: AbstractAuditWriter, *, maxsize: int = 1000) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._writer = writer
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._dropped = 0
        self._written = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def emit(self, event: AuditEvent) -> None:
        try:
            try:
                current = asyncio.get_running_loop()
            except RuntimeError:
                current = None
            if self._loop is not None and current is not self._loop and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._enqueue, event)
            else:
                self._enqueue(event)
        except Exception:
            # Never let auditing reach the caller.
            logger.exception("audit.emit_failed", extra={"event_type": event.event_type})

    def _enqueue(self, event: AuditEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "audit.dropped",
                extra={"event_type": event.event_type, "dropped_total": self._dropped},
            )

    async def start(self) -> None:
        """Start draining the queue. Calling it twice is a no-op."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self._drain_loop())
        logger.info("audit.sink_started", extra={"pending": self._queue.qsize()})

    async def stop(self) -> None:
        """Stop the drain task and flush what is left. Safe to call anytime."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("audit.sink_stopped")
        await self.flush()
        self._loop = None

    async def flush(self) -> int:
        """Write every queued event now; returns how many were taken."""
        taken = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return taken
            taken += 1
            await self._write(event)
            self._queue.task_done()

    async def _drain_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._write(event)
            finally:
                self._queue.task_done()

    async def _write(self, event: AuditEvent) -> None:
        try:
            await self._writer.write(event)
            self._written += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._failed += 1
            logger.error(
                "audit.write_failed",
                extra={"event_type": event.event_type, "error_type": type(exc).__name__},
            )

    def stats(self) -> dict[str, int]:
        return {
            "pending": self._queue.qsize(),
            "written": self._written,
            "dropped": self._dropped,
            "failed": self._failed,
        }
