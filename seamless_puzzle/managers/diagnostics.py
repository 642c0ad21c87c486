# managers/diagnostics.py
"""
MemoryMonitor: reports memory usage and clears the content cache when a
threshold is exceeded. It is the explicit management surface for diagnostic
UIs (memory readout, "clear image cache" button).
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import psutil

from .. import config as config_module
from ..buffers import buffer_metrics
from ..cache import CacheStats, ContentCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticsSnapshot:
    rss_bytes: int
    live_buffers: int
    cache: CacheStats

    @property
    def rss_megabytes(self) -> float:
        return self.rss_bytes / (1024 * 1024)


class MemoryMonitor:
    """Monitors memory usage and performs cleanup actions."""

    def __init__(
        self,
        cache: ContentCache,
        config: Optional[config_module.PuzzleConfig] = None,
        timer=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.config = config or config_module.PuzzleConfig()
        self._clock = clock
        self.last_cleanup: Optional[float] = None
        self.cleanups = 0
        # An optional QTimer drives periodic checks inside a Qt event loop
        self.timer = timer
        if timer is not None:
            timer.timeout.connect(self.check_memory)
            timer.start(self.config.memory_cleanup_interval_secs * 1000)

    @staticmethod
    def memory_usage_bytes() -> int:
        return psutil.Process().memory_info().rss

    def snapshot(self) -> DiagnosticsSnapshot:
        return DiagnosticsSnapshot(
            rss_bytes=self.memory_usage_bytes(),
            live_buffers=buffer_metrics.live,
            cache=self.cache.stats(),
        )

    def check_memory(self) -> bool:
        """Clear the cache if memory is over threshold; return whether it did."""
        try:
            mem = self.memory_usage_bytes()
        except psutil.Error as e:
            logger.warning("Memory check failed: %s", e)
            return False
        if mem <= self.config.memory_threshold_bytes:
            return False
        now = self._clock()
        interval = self.config.memory_cleanup_interval_secs
        if self.last_cleanup is not None and now - self.last_cleanup < interval:
            return False
        self.clear_image_cache()
        self.last_cleanup = now
        return True

    def clear_image_cache(self) -> None:
        """Release every cached buffer on request."""
        before = len(self.cache)
        self.cache.clear(reclaim=True)
        self.cleanups += 1
        logger.info("MemoryMonitor: cleared %d cached buffers", before)

    def stop(self) -> None:
        if self.timer is not None:
            self.timer.stop()


__all__ = ["DiagnosticsSnapshot", "MemoryMonitor"]
