"""Bounded in-memory request log.

Keeps the most recent ``max_entries`` requests per identity. Good enough for
a single instance; a shared log (database, stream) plugs in behind
``AbstractRequestHistory``.
"""

from __future__ import annotations

import threading
from collections import deque

from gatekeeper.adapters.history.base import AbstractRequestHistory, RequestHistoryEntry


class InMemoryRequestHistory(AbstractRequestHistory):
    def __init__(self, *, max_entries: int = 500) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: dict[str, deque[RequestHistoryEntry]] = {}

    def record(self, entry: RequestHistoryEntry) -> None:
        """Append ``entry`` to its identity's log, dropping the oldest if full."""
        with self._lock:
            log = self._entries.get(entry.key)
            if log is None:
                log = deque(maxlen=self._max_entries)
                self._entries[entry.key] = log
            log.append(entry)

    async def fetch(self, identity: str, *, since: float, until: float) -> list[RequestHistoryEntry]:
        with self._lock:
            log = self._entries.get(identity)
            if not log:
                return []
            return [e for e in log if since <= e.timestamp <= until]

    def prune(self, before: float) -> int:
        """Drop entries older than ``before``; returns how many were removed."""
        removed = 0
        with self._lock:
            for identity in list(self._entries):
                log = self._entries[identity]
                while log and log[0].timestamp < before:
                    log.popleft()
                    removed += 1
                if not log:
                    del self._entries[identity]
        return removed

    def __len__(self) -> int:
        with self._lock:
            return sum(len(log) for log in self._entries.values())
