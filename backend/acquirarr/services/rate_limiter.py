"""
Indexer Rate Limiter Service

Serializes outbound indexer traffic so that no indexer is hammered and the
process as a whole stays polite.

Features:
- Global minimum spacing between any two indexer requests
- Per-indexer minimum spacing
- FIFO mutual exclusion (asyncio.Lock wakes waiters in arrival order)
- SearchQueue: one logical search at a time with a floor between starts
- Status report for the health endpoint
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from acquirarr.config import Config
from acquirarr.services.exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

T = TypeVar('T')


class IndexerRateLimiter:
    """
    Mutex gate in front of every indexer request.

    The lock is held for the whole wait-then-stamp sequence: a caller that
    got in computes its delay, sleeps, stamps the request time and only then
    lets the next caller look at the timestamps.

    Args:
        global_interval: Seconds between any two requests
        indexer_interval: Seconds between two requests to the same indexer
    """

    def __init__(self, global_interval: Optional[float] = None,
                 indexer_interval: Optional[float] = None):
        self.global_interval = Config.INDEXER_GLOBAL_INTERVAL if global_interval is None else global_interval
        self.indexer_interval = Config.INDEXER_MIN_INTERVAL if indexer_interval is None else indexer_interval
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None
        self._last_by_indexer: Dict[Any, float] = {}
        self._waiting = 0

    def _delay_for(self, indexer_id: Any, now: float) -> float:
        delay = 0.0
        if self._last_request is not None:
            delay = max(delay, self._last_request + self.global_interval - now)
        last = self._last_by_indexer.get(indexer_id)
        if last is not None:
            delay = max(delay, last + self.indexer_interval - now)
        return delay

    async def acquire_slot(self, indexer_id: Any, timeout: Optional[float] = None) -> float:
        """
        Block until a request to the indexer is allowed.

        Args:
            indexer_id: Indexer the request goes to
            timeout: Give up when the computed delay exceeds this many seconds

        Returns:
            Seconds spent sleeping inside the gate

        Raises:
            RateLimitExceeded: Delay larger than timeout
        """
        self._waiting += 1
        try:
            async with self._lock:
                delay = self._delay_for(indexer_id, time.monotonic())
                if timeout is not None and delay > timeout:
                    raise RateLimitExceeded(service=f"indexer:{indexer_id}", retry_after=delay)
                if delay > 0:
                    logger.debug(f"Indexer {indexer_id}: waiting {delay:.2f}s for a request slot")
                    await asyncio.sleep(delay)
                stamp = time.monotonic()
                self._last_request = stamp
                self._last_by_indexer[indexer_id] = stamp
                return max(delay, 0.0)
        finally:
            self._waiting -= 1

    def reset(self) -> None:
        self._last_request = None
        self._last_by_indexer.clear()

    def get_status(self) -> Dict[str, Any]:
        """Seconds since the last request, globally and per indexer."""
        now = time.monotonic()
        return {
            "global_interval": self.global_interval,
            "indexer_interval": self.indexer_interval,
            "waiting": self._waiting,
            "last_request_age": None if self._last_request is None else round(now - self._last_request, 2),
            "indexers": {
                str(indexer_id): round(now - stamp, 2)
                for indexer_id, stamp in self._last_by_indexer.items()
            },
        }


class SearchQueue:
    """
    Runs whole logical searches one at a time.

    A search is a coroutine function that fans out to several indexers; each
    of those indexer calls still goes through the IndexerRateLimiter.
    """

    def __init__(self, min_interval: Optional[float] = None):
        self.min_interval = Config.SEARCH_MIN_INTERVAL if min_interval is None else min_interval
        self._lock = asyncio.Lock()
        self._last_start: Optional[float] = None
        self._pending = 0

    @property
    def pending(self) -> int:
        """Searches running or waiting for their turn."""
        return self._pending

    async def execute(self, search: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        self._pending += 1
        try:
            async with self._lock:
                if self._last_start is not None:
                    delay = self._last_start + self.min_interval - time.monotonic()
                    if delay > 0:
                        await asyncio.sleep(delay)
                self._last_start = time.monotonic()
                return await search(*args, **kwargs)
        finally:
            self._pending -= 1

    def get_status(self) -> Dict[str, Any]:
        return {
            "pending": self._pending,
            "running": self._lock.locked(),
            "min_interval": self.min_interval,
        }


# Process-wide instances
_rate_limiter: Optional[IndexerRateLimiter] = None
_search_queue: Optional[SearchQueue] = None


def get_rate_limiter() -> IndexerRateLimiter:
    """Get the shared indexer gate."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = IndexerRateLimiter()
    return _rate_limiter


def get_search_queue() -> SearchQueue:
    """Get the shared search queue."""
    global _search_queue
    if _search_queue is None:
        _search_queue = SearchQueue()
    return _search_queue
