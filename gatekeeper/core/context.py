"""Request facts the admission core reads.

The HTTP layer builds a ``RequestContext`` once per request; nothing below it
touches FastAPI objects.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SLASHES = re.compile(r"/{2,}")


def normalize_path(path: str) -> str:
    """Canonicalize a request path for use inside rate-limit keys.

    Examples:
        >>> normalize_path("//V1/AI//chat/")
        '/v1/ai/chat'
        >>> normalize_path("")
        '/'
    """
    path = _SLASHES.sub("/", path or "/").lower()
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/")
    return path


@dataclass(frozen=True)
class RequestContext:
    """Attributes of one inbound request.

    Attributes:
        remote_address: Client network address, if known.
        user_agent: Raw User-Agent header, if sent.
        path: Request path as received.
        method: HTTP method, upper-cased.
        identity: Stable authenticated identity, ``None`` when anonymous.
        subscription_tier: Caller's plan name, if known.
    """

    remote_address: str | None = None
    user_agent: str | None = None
    path: str = "/"
    method: str = "GET"
    identity: str | None = None
    subscription_tier: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.identity)

    @property
    def normalized_path(self) -> str:
        return normalize_path(self.path)
