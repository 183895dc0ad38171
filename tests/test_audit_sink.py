"""Tests for the queued audit sink and the logging writer."""

import asyncio
import logging
import threading

import pytest

from gatekeeper.adapters.audit.base import AbstractAuditWriter, AuditEvent
from gatekeeper.adapters.audit.logging_writer import LoggingAuditWriter
from gatekeeper.adapters.audit.queue_sink import QueueAuditSink


class ListWriter(AbstractAuditWriter):
    def __init__(self) -> None:
        self.written: list[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.written.append(event)


class FailingWriter(AbstractAuditWriter):
    async def write(self, event: AuditEvent) -> None:
        raise OSError("disk full")


class BlockingWriter(AbstractAuditWriter):
    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def write(self, event: AuditEvent) -> None:
        await self.release.wait()


def _event(i: int = 0) -> AuditEvent:
    return AuditEvent(event_type="rate_limit_exceeded", payload={"n": i}, timestamp=1000.0)


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking() -> None:
    writer = ListWriter()
    sink = QueueAuditSink(writer, maxsize=2)

    for i in range(5):
        sink.emit(_event(i))

    assert sink.stats()["pending"] == 2
    assert sink.stats()["dropped"] == 3

    await sink.stop()
    assert [e.payload["n"] for e in writer.written] == [0, 1]


@pytest.mark.asyncio
async def test_drain_task_writes_events() -> None:
    writer = ListWriter()
    sink = QueueAuditSink(writer)
    await sink.start()
    try:
        sink.emit(_event(1))
        sink.emit(_event(2))
        for _ in range(100):
            if len(writer.written) == 2:
                break
            await asyncio.sleep(0.01)
    finally:
        await sink.stop()

    assert [e.payload["n"] for e in writer.written] == [1, 2]
    assert sink.stats()["written"] == 2


@pytest.mark.asyncio
async def test_slow_writer_does_not_block_emit() -> None:
    writer = BlockingWriter()
    sink = QueueAuditSink(writer, maxsize=1)
    await sink.start()
    try:
        for i in range(10):
            sink.emit(_event(i))
        assert sink.stats()["dropped"] >= 8
    finally:
        writer.release.set()
        await sink.stop()


@pytest.mark.asyncio
async def test_failing_writer_is_counted_not_raised() -> None:
    sink = QueueAuditSink(FailingWriter())
    sink.emit(_event())

    assert await sink.flush() == 1
    assert sink.stats()["failed"] == 1
    assert sink.stats()["written"] == 0


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent() -> None:
    sink = QueueAuditSink(ListWriter())

    await sink.stop()
    await sink.start()
    task = sink._task
    await sink.start()
    assert sink._task is task
    assert sink.running is True

    await sink.stop()
    await sink.stop()
    assert sink.running is False


@pytest.mark.asyncio
async def test_emit_from_worker_thread_is_handed_to_loop() -> None:
    writer = ListWriter()
    sink = QueueAuditSink(writer)
    await sink.start()
    try:
        thread = threading.Thread(target=sink.emit, args=(_event(7),))
        thread.start()
        thread.join()
        for _ in range(100):
            if writer.written:
                break
            await asyncio.sleep(0.01)
    finally:
        await sink.stop()

    assert [e.payload["n"] for e in writer.written] == [7]


def test_invalid_maxsize() -> None:
    with pytest.raises(ValueError):
        QueueAuditSink(ListWriter(), maxsize=0)


@pytest.mark.asyncio
async def test_logging_writer_emits_structured_record() -> None:
    records: list[logging.LogRecord] = []

    class _Capture(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    audit_logger = logging.getLogger("test.audit.writer")
    audit_logger.propagate = False
    audit_logger.setLevel(logging.INFO)
    audit_logger.addHandler(_Capture())

    event = AuditEvent(
        event_type="suspicious_activity_detected",
        payload={"user_id": "u1"},
        timestamp=1234.0,
        severity="warning",
    )
    await LoggingAuditWriter(audit_logger).write(event)

    [record] = records
    assert record.getMessage() == "audit.suspicious_activity_detected"
    assert record.levelno == logging.WARNING
    assert record.event_data == {"user_id": "u1"}
    assert record.event_timestamp == 1234.0
