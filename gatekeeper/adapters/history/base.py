"""Request history interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RequestHistoryEntry:
    """One logged request.

    Attributes:
        key: Identity the request was made under.
        source_address: Client address.
        user_agent: Raw User-Agent header.
        timestamp: UNIX time in seconds.
        failed: Whether the request ended in an error response.
    """

    key: str
    source_address: str | None
    user_agent: str | None
    timestamp: float
    failed: bool = False


class AbstractRequestHistory(ABC):
    """Read side of the request log."""

    @abstractmethod
    async def fetch(self, identity: str, *, since: float, until: float) -> list[RequestHistoryEntry]:
        """Return entries for ``identity`` with ``since <= timestamp <= until``.

        Entries are ordered oldest first.

        Raises:
            Exception: Any failure of the backing store; callers fail open.
        """
        raise NotImplementedError
