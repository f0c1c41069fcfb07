from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Per-provider request pacing.

    Two independent rules, either of which may be disabled:

    * a minimum delay between consecutive upstream calls, raised
      multiplicatively (up to ``max_interval_sec``) each time the upstream
      answers 429;
    * a rolling quota of ``max_requests`` calls per ``window_sec``. A call that
      would exceed it is rejected outright instead of waiting.

    Slots are reserved synchronously before the first await, so coroutines that
    race on the same limiter are spaced out correctly on a single event loop.
    """

    def __init__(
        self,
        *,
        min_interval_sec: float = 0.0,
        max_requests: int | None = None,
        window_sec: float = 60.0,
        backoff_factor: float = 1.5,
        max_interval_sec: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests is not None and max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.base_interval_sec = min_interval_sec
        self.min_interval_sec = min_interval_sec
        self.max_requests = max_requests
        self.window_sec = window_sec
        self.backoff_factor = backoff_factor
        self.max_interval_sec = max(max_interval_sec, min_interval_sec)
        self._clock = clock
        self._sleep = sleep
        self._next_slot_at = 0.0
        self._window: deque[float] = deque()
        self.rejected = 0

    def _prune(self, now: float) -> None:
        while self._window and now - self._window[0] >= self.window_sec:
            self._window.popleft()

    def remaining(self) -> int | None:
        if self.max_requests is None:
            return None
        self._prune(self._clock())
        return max(self.max_requests - len(self._window), 0)

    def seconds_until_reset(self) -> float | None:
        """Seconds until the oldest call in the window ages out."""
        if self.max_requests is None:
            return None
        now = self._clock()
        self._prune(now)
        if not self._window:
            return 0.0
        return max(self._window[0] + self.window_sec - now, 0.0)

    def try_reserve(self) -> float | None:
        """Reserve the next slot; returns the delay to wait, or None if over quota."""
        now = self._clock()
        if self.max_requests is not None:
            self._prune(now)
            if len(self._window) >= self.max_requests:
                self.rejected += 1
                return None

        slot = max(now, self._next_slot_at)
        self._next_slot_at = slot + self.min_interval_sec
        if self.max_requests is not None:
            self._window.append(slot)
        return slot - now

    async def acquire(self) -> bool:
        delay = self.try_reserve()
        if delay is None:
            return False
        if delay > 0:
            await self._sleep(delay)
        return True

    def penalize(self) -> None:
        """Stretch the inter-request delay after an upstream 429."""
        current = self.min_interval_sec or self.base_interval_sec or 0.1
        self.min_interval_sec = min(current * self.backoff_factor, self.max_interval_sec)
        logger.info("[RATE_LIMIT][backoff] min_interval_sec=%.3f", self.min_interval_sec)

    def exhaust(self) -> None:
        """Treat the current window as spent (upstream says our quota is gone)."""
        if self.max_requests is None:
            return
        now = self._clock()
        self._prune(now)
        while len(self._window) < self.max_requests:
            self._window.append(now)

    def reset(self) -> None:
        self.min_interval_sec = self.base_interval_sec
        self._next_slot_at = 0.0
        self._window.clear()
        self.rejected = 0
