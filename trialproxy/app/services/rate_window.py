"""Fixed-window rate limiting keyed by user identity.

Each key gets a counter that opens on its first request and closes
``window_seconds`` later. Requests beyond ``max_per_window`` inside an open
window are rejected without being counted. State lives in process memory
and is bounded by an LRU limit on tracked keys.
"""

import asyncio
import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional

from trialproxy.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateWindowResult:
    """Result of a rate window check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None

    def seconds_until_reset(self, now: float) -> int:
        return max(0, math.ceil(self.reset_time - now))


@dataclass
class RateWindowEntry:
    """Counter for one key in its current window."""
    requests: int = 0
    window_start: float = field(default_factory=time.time)


class RateWindow:
    """In-memory fixed-window counter.

    The check and the increment happen under one lock without any await in
    between, so concurrent requests for the same key can never both take
    the last slot of a window.

    Memory optimization:
    - Uses OrderedDict for LRU behavior
    - Limits max entries to prevent unbounded memory growth
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        max_per_window: int,
        window_seconds: float = 60,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the rate window.

        Args:
            max_per_window: Requests allowed per key in one window
            window_seconds: Window length in seconds
            max_entries: Maximum number of keys to track (LRU eviction)
            clock: Time source, seconds since the epoch
        """
        if max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self.clock = clock
        self._max_entries = max_entries
        self._entries: OrderedDict[str, RateWindowEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def tracked_keys(self) -> int:
        return len(self._entries)

    def _enforce_lru_limit(self) -> None:
        """Evict the least recently used 20% once the limit is exceeded."""
        if len(self._entries) > self._max_entries:
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(remove_count):
                self._entries.popitem(last=False)

    async def check(self, key: str, now: Optional[float] = None) -> RateWindowResult:
        """Count one request for ``key`` if the window still has room.

        Args:
            key: Rate limit key (the user identity)
            now: Current time; defaults to the configured clock

        Returns:
            RateWindowResult with the decision and header metadata
        """
        async with self._lock:
            if now is None:
                now = self.clock()

            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)

            if entry is None or now - entry.window_start >= self.window_seconds:
                entry = RateWindowEntry(requests=0, window_start=now)
                self._entries[key] = entry
                self._enforce_lru_limit()

            reset_time = entry.window_start + self.window_seconds

            if entry.requests >= self.max_per_window:
                return RateWindowResult(
                    allowed=False,
                    limit=self.max_per_window,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=max(1, math.ceil(reset_time - now)),
                )

            entry.requests += 1

            return RateWindowResult(
                allowed=True,
                limit=self.max_per_window,
                remaining=self.max_per_window - entry.requests,
                reset_time=reset_time,
            )

    async def cleanup(self, now: Optional[float] = None) -> int:
        """Drop entries whose window has closed.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            if now is None:
                now = self.clock()
            expired = [
                key for key, entry in self._entries.items()
                if now - entry.window_start >= self.window_seconds
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)


class RateWindowSweeper:
    """Background task that periodically clears expired rate window entries.

    Usage:
        sweeper = RateWindowSweeper([gemini_window, search_window], interval=60)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, windows: list[RateWindow], interval: float = 60.0):
        self._windows = windows
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def sweep(self) -> int:
        removed = 0
        for window in self._windows:
            removed += await window.cleanup()
        if removed:
            logger.debug(f"Removed {removed} expired rate window entries")
        return removed

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started rate window sweeper (interval: {self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Rate window sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped rate window sweeper")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                try:
                    await self.sweep()
                except Exception as e:
                    logger.error(f"Error during rate window sweep: {e}")
