"""Thread-safe LRU cache of pixel buffers keyed by content hash.

The cache owns every buffer stored in it.  :meth:`ContentCache.get` hands out
a clone so callers can never mutate or release a cached owner.  When the map
reaches capacity the least recently accessed entries are evicted in a batch
and their buffers released.

There is no process-wide instance; whoever builds a cache passes it to the
components that use it.
"""

from __future__ import annotations

import gc
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import RLock
from typing import Callable, List, Optional

from . import config
from .buffers import PixelBuffer
from .errors import release_quietly

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _CacheEntry:
    buffer: PixelBuffer
    last_accessed: float


@dataclass(frozen=True)
class CacheStats:
    entries: int
    capacity: int
    hits: int
    misses: int
    evictions: int


class ContentCache:
    """A bounded, thread-safe LRU cache of :class:`PixelBuffer` objects."""

    def __init__(
        self,
        capacity: int = config.CACHE_CAPACITY,
        evict_batch: int = config.CACHE_EVICT_BATCH,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be greater than zero")
        self.capacity = capacity
        self.evict_batch = max(1, min(evict_batch, capacity))
        self._clock = clock
        self._cache: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._lock = RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_config(cls, cfg: config.PuzzleConfig) -> "ContentCache":
        return cls(capacity=cfg.cache_capacity, evict_batch=cfg.cache_evict_batch)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._cache

    def get(self, key: str) -> Optional[PixelBuffer]:
        """Return a clone of the buffer stored under *key*, or ``None``.

        Accessing an item moves it to the end to mark it as most recently used.
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            entry.last_accessed = self._clock()
            self._cache.move_to_end(key)
            self._hits += 1
            return entry.buffer.clone()

    def put(self, key: str, buffer: PixelBuffer) -> None:
        """Store *buffer* under *key*; the cache takes ownership.

        At capacity the ``evict_batch`` least recently accessed entries are
        released before the new entry is inserted.
        """
        evicted: List[PixelBuffer] = []
        with self._lock:
            previous = self._cache.pop(key, None)
            if previous is not None and previous.buffer is not buffer:
                evicted.append(previous.buffer)
            elif len(self._cache) >= self.capacity:
                evicted.extend(self._evict_oldest(self.evict_batch))
            self._cache[key] = _CacheEntry(buffer, self._clock())
        for stale in evicted:
            release_quietly(stale.release, "cached buffer")

    def _evict_oldest(self, count: int) -> List[PixelBuffer]:
        """Detach the *count* least recently accessed entries. Caller holds the lock."""
        oldest = sorted(self._cache.items(), key=lambda item: item[1].last_accessed)[:count]
        removed = []
        for key, entry in oldest:
            del self._cache[key]
            removed.append(entry.buffer)
        self._evictions += len(removed)
        if removed:
            logger.debug("Evicted %d cached buffers", len(removed))
        return removed

    def clear(self, *, reclaim: bool = False) -> None:
        """Release every cached buffer. Safe to call repeatedly.

        ``reclaim`` requests a best-effort garbage collection pass afterwards.
        """
        with self._lock:
            entries = list(self._cache.values())
            self._cache.clear()
        for entry in entries:
            release_quietly(entry.buffer.release, "cached buffer")
        if reclaim:
            gc.collect()

    # Public wrapper to avoid using a private method from callers
    def cleanup(self) -> None:
        """Evict one batch of least-recently-used entries."""
        with self._lock:
            evicted = self._evict_oldest(self.evict_batch)
        for stale in evicted:
            release_quietly(stale.release, "cached buffer")

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._cache),
                capacity=self.capacity,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )


__all__ = ["CacheStats", "ContentCache"]
