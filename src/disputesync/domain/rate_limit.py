"""Per-connection rate limiting for outbound provider calls."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from aiolimiter import AsyncLimiter

from disputesync.domain.errors import RateLimitExceeded

if TYPE_CHECKING:
    from disputesync.domain.model import Connection, RateLimitPolicy

log = getLogger(__name__)


def _build_limiter(policy: RateLimitPolicy) -> AsyncLimiter:
    # bucket of `capacity` tokens refilled at `refill_per_minute`
    refill = max(policy.refill_per_minute, 1)
    capacity = max(policy.capacity, 1)
    return AsyncLimiter(capacity, time_period=60.0 * capacity / refill)


class RateLimiter:
    """Token bucket per connection.

    In blocking mode ``acquire`` waits up to ``wait_seconds`` for capacity; in
    non-blocking mode it fails immediately. Both raise ``RateLimitExceeded``,
    which callers treat as retryable.
    """

    def __init__(self, *, blocking: bool = True, wait_seconds: float = 30.0) -> None:
        self.blocking = blocking
        self.wait_seconds = wait_seconds
        self._limiters: dict[str, tuple[RateLimitPolicy, AsyncLimiter]] = {}

    def _limiter_for(self, connection: Connection) -> AsyncLimiter:
        entry = self._limiters.get(connection.connection_id)
        if entry is None or entry[0] != connection.rate_limit:
            limiter = _build_limiter(connection.rate_limit)
            self._limiters[connection.connection_id] = (connection.rate_limit, limiter)
            return limiter
        return entry[1]

    def forget(self, connection_id: str) -> None:
        self._limiters.pop(connection_id, None)

    def has_capacity(self, connection: Connection) -> bool:
        return self._limiter_for(connection).has_capacity()

    async def acquire(self, connection: Connection) -> None:
        limiter = self._limiter_for(connection)
        if not self.blocking:
            if not limiter.has_capacity():
                raise RateLimitExceeded(connection.connection_id)
            await limiter.acquire()
            return
        try:
            async with asyncio.timeout(self.wait_seconds):
                await limiter.acquire()
        except TimeoutError as exc:
            log.warning(
                "Rate limit wait exceeded %.1fs for %s", self.wait_seconds, connection.connection_id
            )
            raise RateLimitExceeded(connection.connection_id) from exc
