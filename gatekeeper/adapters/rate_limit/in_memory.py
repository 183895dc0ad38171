"""In-memory fixed-window store with sharded locking.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each key hashes to one shard, and every read-modify-write of a
  key happens under that shard's lock. Keys on different shards never wait
  on each other.
"""

from __future__ import annotations

import threading
from dataclasses import replace

from gatekeeper.adapters.rate_limit.base import AbstractWindowStore, Decision, WindowState
from gatekeeper.core.policy import PolicyConfig

DEFAULT_SHARDS = 64


class _Shard:
    __slots__ = ("lock", "states")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.states: dict[str, WindowState] = {}


class ShardedWindowStore(AbstractWindowStore):
    """Fixed-window counters keyed by string.

    A window opens on the first request for a key (not on a wall-clock
    boundary) and lasts ``policy.window_seconds``. The request that takes the
    count to ``max_requests + 1`` is the first one denied. Denied requests
    still count, so a flood keeps the key saturated until the window ends.
    """

    def __init__(self, *, shards: int = DEFAULT_SHARDS) -> None:
        """Initialize the store.

        Args:
            shards: Number of independently locked partitions.

        Raises:
            ValueError: If shards < 1.
        """
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._shards = tuple(_Shard() for _ in range(shards))

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def evaluate(self, key: str, policy: PolicyConfig, now: float) -> Decision:
        """Charge one request to ``key`` and decide whether it is admitted.

        Args:
            key: Counter key.
            policy: Window length and ceiling to apply.
            now: Current UNIX time in seconds.

        Returns:
            Decision built from the post-increment state.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        shard = self._shard_for(key)
        with shard.lock:
            state = shard.states.get(key)
            if state is None or now >= state.reset_at:
                state = WindowState(
                    count=0,
                    window_start=now,
                    reset_at=now + policy.window_seconds,
                    first_seen_at=now,
                )
                shard.states[key] = state
            state.count += 1
            return Decision.from_state(state, policy, now)

    def evict_expired(self, now: float, grace_seconds: float) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [
                    key
                    for key, state in shard.states.items()
                    if state.reset_at + grace_seconds < now
                ]
                for key in expired:
                    del shard.states[key]
            removed += len(expired)
        return removed

    def get_state(self, key: str) -> WindowState | None:
        """Return a copy of the window state for ``key`` (diagnostics only)."""
        shard = self._shard_for(key)
        with shard.lock:
            state = shard.states.get(key)
            return replace(state) if state is not None else None

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.states.clear()

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.states)
        return total

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        shard = self._shard_for(key)
        with shard.lock:
            return key in shard.states

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"ShardedWindowStore(shards={len(self._shards)}, keys={len(self)})"
