"""
Time-bounded lookup cache for provider responses and computed paths

This module provides in-memory caching with:
- Per-entry TTL supplied at each call site
- LRU (Least Recently Used) eviction policy
- Single-flight get_or_compute so concurrent callers share one producer call
- Thread-safe operations for concurrent access
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar
import asyncio
import threading
import time
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CacheEntry(Generic[T]):
    """Cached payload with an absolute expiry on the cache's clock"""
    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def path_key(actor1_id: int, actor2_id: int) -> str:
    """
    Create an order-independent cache key for an actor pair

    path_key(a, b) == path_key(b, a) for all ids.
    """
    low, high = sorted((actor1_id, actor2_id))
    return f"path:{low}:{high}"


class LookupCache:
    """
    In-memory TTL cache shared by the provider and the path finder

    A single instance memoizes actor details, filmographies, movie casts,
    search results and computed paths. Each entry carries its own expiry,
    so every call site chooses the TTL class of the data it stores.

    Features:
    - Lazy expiry on read plus periodic sweep
    - LRU eviction when cache is full
    - Single-flight producer calls per key
    - Thread-safe operations
    """

    def __init__(self, max_size: int = 10000, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the lookup cache

        Args:
            max_size: Maximum number of entries to keep (default: 10000)
            clock: Monotonic time source in seconds (injectable for tests)
        """
        self.max_size = max_size
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry[Any]]" = OrderedDict()
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        logger.info(f"LookupCache initialized with max_size={max_size}")

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a fresh cached value

        Args:
            key: Cache key

        Returns:
            The cached value, or None if absent or expired
        """
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                logger.debug(f"Cache MISS: {key}")
                return None

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._misses += 1
                self._evictions += 1
                logger.debug(f"Cache EXPIRED: {key}")
                return None

            self._cache.move_to_end(key)
            self._hits += 1
            logger.debug(f"Cache HIT: {key}")
            return entry.value

    def set(self, key: str, value: Any, ttl: float):
        """
        Store a value, overwriting any existing entry for the key

        Args:
            key: Cache key
            value: Value to store
            ttl: Time to live in seconds
        """
        with self._lock:
            self._cache[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
            self._cache.move_to_end(key)

            # Evict LRU if cache is full
            while len(self._cache) > self.max_size:
                evicted_key, _ = self._cache.popitem(last=False)
                self._evictions += 1
                logger.debug(f"Evicted LRU entry: {evicted_key}")

    async def get_or_compute(self, key: str, ttl: float, producer: Callable[[], Awaitable[T]]) -> T:
        """
        Return the cached value for key, computing and storing it on a miss

        Concurrent callers for the same cold key await a single producer call.
        The producer runs in its own task, so cancelling any caller (including
        the one that started it) never cancels the shared computation. A
        failing producer propagates its exception to every waiter and
        nothing is stored.

        Args:
            key: Cache key
            ttl: Time to live in seconds for a freshly computed value
            producer: Zero-argument coroutine function computing the value

        Returns:
            The cached or freshly computed value
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._lock:
            task = self._in_flight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._compute(key, ttl, producer))
                self._in_flight[key] = task
                task.add_done_callback(lambda done: self._finish(key, done))
            else:
                logger.debug(f"Joining in-flight computation: {key}")

        return await asyncio.shield(task)

    async def _compute(self, key: str, ttl: float, producer: Callable[[], Awaitable[T]]) -> T:
        value = await producer()
        self.set(key, value, ttl)
        return value

    def _finish(self, key: str, task: asyncio.Task):
        with self._lock:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

        # Mark retrieved so a failure nobody awaited is not reported by asyncio
        if not task.cancelled():
            task.exception()

    def delete(self, key: str) -> bool:
        """Remove a single entry, returning whether it existed"""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def purge_expired(self) -> int:
        """
        Physically remove every expired entry

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                del self._cache[key]
            self._evictions += len(expired)

        if expired:
            logger.info(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    async def run_periodic_sweep(self, interval: float):
        """
        Sweep expired entries every interval seconds until cancelled

        Args:
            interval: Seconds between sweeps
        """
        while True:
            await asyncio.sleep(interval)
            self.purge_expired()

    def stats(self) -> dict:
        """
        Get cache statistics

        Returns:
            Dictionary with cache metrics
        """
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

            return {
                'size': len(self._cache),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'evictions': self._evictions,
                'hit_rate': round(hit_rate, 2),
                'total_requests': total_requests,
                'in_flight': len(self._in_flight)
            }

    def keys(self) -> List[str]:
        """Keys of all stored entries, least recently used first"""
        with self._lock:
            return list(self._cache.keys())

    def clear(self):
        """Clear all cached entries"""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            logger.info("Cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
