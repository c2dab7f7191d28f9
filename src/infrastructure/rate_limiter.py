import asyncio
import time
from typing import Awaitable, Callable, Optional


class AsyncRateLimiter:
    """
    Token-bucket limiter for outbound requests to one upstream host.

    Each call to `acquire` consumes a token. Tokens refill at a constant
    rate of `max_calls` per `period_seconds`.
    """

    def __init__(
        self,
        max_calls: int,
        period_seconds: float,
        time_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_calls <= 0:
            raise ValueError("max_calls must be positive.")
        if period_seconds <= 0:
            raise ValueError("period_seconds must be positive.")

        self._max_calls = float(max_calls)
        self._rate_per_second = self._max_calls / period_seconds
        self._time_per_token = period_seconds / self._max_calls
        self._time_fn = time_fn or time.monotonic
        self._sleep_fn = sleep_fn or asyncio.sleep

        self._lock = asyncio.Lock()
        self._tokens = self._max_calls
        self._last_refill = self._time_fn()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        while True:
            async with self._lock:
                self._refill(self._time_fn())
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) * self._time_per_token

            # Sleep outside the lock so other waiters can refill too.
            await self._sleep_fn(wait_time)

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = min(self._max_calls, self._tokens + elapsed * self._rate_per_second)
        self._last_refill = now
