# classroom_realtime/services/rate_limiter.py

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict

from redis.exceptions import RedisError
import logging

from classroom_realtime.models.models import RateLimitResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 10
DEFAULT_WINDOW_MS = 60_000


def _now_ms() -> float:
    return time.time() * 1000


class RateLimiter(ABC):
    """Per-sender sliding window admission control. Holds no authorization logic."""

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES, window_ms: int = DEFAULT_WINDOW_MS) -> None:
        self.max_messages = max_messages
        self.window_ms = window_ms

    @abstractmethod
    async def check_rate_limit(
        self,
        sender_id: str,
        max_messages: int | None = None,
        window_ms: int | None = None,
    ) -> RateLimitResult:
        """
        Record an attempt for `sender_id` if the window has room.

        Returns:
            RateLimitResult(limited=False, attempt_id=...) when accepted, otherwise
            RateLimitResult(limited=True, retry_after_ms=<ms until the oldest entry expires>)
        """

    @abstractmethod
    async def release(self, sender_id: str, attempt_id: str | None) -> None:
        """Give back the slot of an accepted attempt whose message was never stored."""

    def _limits(self, max_messages: int | None, window_ms: int | None) -> tuple[int, int]:
        return (
            self.max_messages if max_messages is None else max_messages,
            self.window_ms if window_ms is None else window_ms,
        )

    def prune(self) -> int:
        """Drop expired state. Returns the number of senders removed."""
        return 0

    async def run_sweeper(self, interval: float) -> None:
        """Periodic full prune, run as a background task for the life of the process."""
        while True:
            await asyncio.sleep(interval)
            removed = self.prune()
            if removed:
                logger.debug("Rate limit sweep removed %d idle senders", removed)


class SlidingWindowRateLimiter(RateLimiter):
    """
    In-process window: one deque of millisecond timestamps per sender.

    Counts only what this process has seen. Behind a load balancer without
    sticky sessions a sender spread across processes is under-counted; use
    RedisRateLimiter there.
    """

    def __init__(
        self,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        super().__init__(max_messages, window_ms)
        self.clock = clock
        self.windows: Dict[str, Deque[float]] = {}

    async def check_rate_limit(self, sender_id, max_messages=None, window_ms=None) -> RateLimitResult:
        return self.check(sender_id, max_messages, window_ms)

    def check(self, sender_id: str, max_messages: int | None = None, window_ms: int | None = None) -> RateLimitResult:
        max_messages, window_ms = self._limits(max_messages, window_ms)
        now = self.clock()

        window = self.windows.setdefault(str(sender_id), deque())
        # Lazy prune of this sender's expired entries
        while window and now - window[0] >= window_ms:
            window.popleft()

        if len(window) >= max_messages:
            retry_after = window_ms - (now - window[0]) if window else window_ms
            return RateLimitResult(limited=True, retry_after_ms=max(1, int(retry_after)))

        window.append(now)
        return RateLimitResult(limited=False, attempt_id=repr(now))

    async def release(self, sender_id: str, attempt_id: str | None) -> None:
        window = self.windows.get(str(sender_id))
        if not window or attempt_id is None:
            return
        try:
            window.remove(float(attempt_id))
        except ValueError:
            # Already aged out of the window
            return

    def prune(self, window_ms: int | None = None) -> int:
        window_ms = self.window_ms if window_ms is None else window_ms
        now = self.clock()
        removed = 0
        for sender_id in list(self.windows):
            window = self.windows[sender_id]
            while window and now - window[0] >= window_ms:
                window.popleft()
            if not window:
                del self.windows[sender_id]
                removed += 1
        return removed


class RedisRateLimiter(RateLimiter):
    """
    Window shared by every process, kept in a Redis sorted set per sender
    (member = unique attempt id, score = timestamp in ms).

    The attempt is added in the same MULTI/EXEC as the count, so concurrent
    checks for one sender are serialized by Redis: each one sees every
    attempt added before it, and an attempt that pushes the count over the
    limit removes itself again.

    If Redis errors the check falls back to an in-process window so posting
    keeps working with the single-process guarantee.
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(
        self,
        client,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        window_ms: int = DEFAULT_WINDOW_MS,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        super().__init__(max_messages, window_ms)
        self.client = client
        self.clock = clock
        self.fallback = SlidingWindowRateLimiter(max_messages, window_ms, clock=clock)

    async def check_rate_limit(self, sender_id, max_messages=None, window_ms=None) -> RateLimitResult:
        max_messages, window_ms = self._limits(max_messages, window_ms)
        key = f"{self.KEY_PREFIX}{sender_id}"
        attempt_id = uuid.uuid4().hex
        now = self.clock()

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, "-inf", now - window_ms)
                pipe.zadd(key, {attempt_id: now})
                pipe.zcard(key)
                pipe.zrange(key, 0, 0, withscores=True)
                pipe.pexpire(key, int(window_ms))
                _, _, count, oldest, _ = await pipe.execute()

            if count > max_messages:
                await self.client.zrem(key, attempt_id)
                oldest_ts = oldest[0][1] if oldest else now
                retry_after = window_ms - (now - oldest_ts)
                return RateLimitResult(limited=True, retry_after_ms=max(1, int(retry_after)))

            return RateLimitResult(limited=False, attempt_id=attempt_id)
        except (RedisError, OSError) as e:
            logger.warning("⚠ Shared rate limit unavailable, using local window: %s", e)
            return self.fallback.check(sender_id, max_messages, window_ms)

    async def release(self, sender_id: str, attempt_id: str | None) -> None:
        if attempt_id is None:
            return
        try:
            removed = await self.client.zrem(f"{self.KEY_PREFIX}{sender_id}", attempt_id)
        except (RedisError, OSError) as e:
            logger.warning("⚠ Could not release rate limit slot for %s: %s", sender_id, e)
            return
        if not removed:
            # Admitted by the local fallback window
            await self.fallback.release(sender_id, attempt_id)

    def prune(self) -> int:
        # Redis expires idle keys itself; only the fallback needs sweeping
        return self.fallback.prune()
