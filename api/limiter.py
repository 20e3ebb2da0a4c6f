"""
api/limiter.py -- Fixed-window, per-client rate limiting for the auth endpoints.

Built on the `limits` package, the engine under slowapi: a
FixedWindowRateLimiter over a storage backend, with policies written as rate
strings ("5/15 minutes"). The first hit opens a window for the client; hits
past the limit in the same window are rejected with a retry-after equal to
the time left in the window (rounded up, never below 1s). Rejected hits
still count, so a throttled client stays throttled until the window ends.

The default storage is "memory://": counters live in this process and
MemoryStorage expires idle windows by itself. Behind several workers each
worker enforces the limit independently; point RATE_LIMIT_STORAGE_URI at a
shared backend (e.g. redis://) to scale out.

Clients are keyed with slowapi's get_remote_address (the client socket
address); put the service behind a proxy that rewrites it if needed.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable

from fastapi import Request
from limits import parse
from limits.storage import MemoryStorage, Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter
from limits.util import WindowStats
from slowapi.util import get_remote_address

from core.errors import RateLimitError


class RateLimiter:
    """One rate policy ("5/15 minutes") charged per client id."""

    def __init__(
        self,
        limit: str,
        storage: Storage | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.item = parse(limit)
        self.storage = storage if storage is not None else MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)
        # Storage reset times are epoch seconds.
        self._clock = clock

    @classmethod
    def from_uri(cls, limit: str, storage_uri: str) -> RateLimiter:
        return cls(limit, storage=storage_from_string(storage_uri))

    def hit(self, client_id: str) -> WindowStats:
        """Count one request for client_id. Raises RateLimitError when over the limit."""
        allowed = self._strategy.hit(self.item, client_id)
        stats = self._strategy.get_window_stats(self.item, client_id)
        if not allowed:
            retry_after = max(1, math.ceil(stats.reset_time - self._clock()))
            raise RateLimitError(retry_after)
        return stats

    def clear(self, client_id: str) -> None:
        self._strategy.clear(self.item, client_id)

    def reset(self) -> None:
        self.storage.reset()


def client_key(request: Request) -> str:
    return get_remote_address(request) or "unknown"


def rate_limit(name: str):
    """Build a dependency that charges one request to the limiter app.state.<name>.

    Use as a FastAPI dependency:
        @router.post("/auth/login", dependencies=[Depends(rate_limit("auth_limiter"))])
    """

    def dependency(request: Request) -> None:
        limiter: RateLimiter = getattr(request.app.state, name)
        limiter.hit(client_key(request))

    return dependency
