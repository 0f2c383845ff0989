"""Sliding-window admission control keyed by caller."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable

from .metrics import limiter_tracked_keys, requests_rate_limited_total


class RateLimiter:
    """Admit at most ``limit`` calls per key within any ``window_s`` seconds.

    A timestamp is kept for every admitted call. Rejected calls are not
    recorded, so a caller that keeps retrying is admitted again as soon as its
    oldest admission leaves the window.
    """

    def __init__(
        self,
        limit: int,
        window_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 0:
            raise ValueError("limit must not be negative")
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._requests: dict[str, list[float]] = {}

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            cutoff = now - self.window_s
            recent = [ts for ts in self._requests.get(key, ()) if ts > cutoff]
            if len(recent) >= self.limit:
                if recent:
                    self._requests[key] = recent
                requests_rate_limited_total.inc()
                logging.getLogger(__name__).info(
                    "rate_limited",
                    extra={"event_type": "rate_limited", "user_key": key, "count": len(recent)},
                )
                return False
            recent.append(now)
            self._requests[key] = recent
            return True

    def cleanup(self) -> int:
        """Drop expired timestamps for every key and forget idle keys.

        Returns the number of keys removed.
        """
        with self._lock:
            cutoff = self._clock() - self.window_s
            removed = 0
            for key in list(self._requests):
                recent = [ts for ts in self._requests[key] if ts > cutoff]
                if recent:
                    self._requests[key] = recent
                else:
                    del self._requests[key]
                    removed += 1
            limiter_tracked_keys.set(len(self._requests))
        logging.getLogger(__name__).debug(
            "rate_limiter_cleanup",
            extra={"event_type": "rate_limiter_cleanup", "count": removed},
        )
        return removed

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._requests)


async def run_cleanup(
    limiter: RateLimiter, interval_s: float, stop: asyncio.Event | None = None
) -> None:
    """Call :meth:`RateLimiter.cleanup` every ``interval_s`` seconds until ``stop`` is set."""

    stop = stop or asyncio.Event()
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            limiter.cleanup()
