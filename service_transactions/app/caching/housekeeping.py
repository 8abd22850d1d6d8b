"""
Memory-pressure housekeeping for the Transaction Proxy Service.
"""

import asyncio
import gc
from typing import Any, Dict, Optional

import psutil

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .cache_service import TransactionCacheService


class MemoryMonitor:
    """Periodic memory check that purges old cache entries under pressure."""

    def __init__(
        self,
        cache_service: TransactionCacheService,
        threshold: float = 0.8,
        memory_limit_bytes: Optional[int] = None,
        check_interval_seconds: float = 60.0,
        stats_interval_seconds: float = 300.0,
        retention_days: int = 30,
        metrics: Optional[MetricsCollector] = None
    ):
        self.cache_service = cache_service
        self.threshold = threshold
        self.memory_limit_bytes = memory_limit_bytes
        self.check_interval_seconds = check_interval_seconds
        self.stats_interval_seconds = stats_interval_seconds
        self.retention_days = retention_days
        self.metrics = metrics
        self.logger = get_logger("transactions.housekeeping")

        self._process = psutil.Process()
        self._check_task: Optional[asyncio.Task] = None
        self._stats_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the monitor loops."""
        self.running = True
        self._check_task = asyncio.create_task(self._check_loop())
        self._stats_task = asyncio.create_task(self._stats_loop())
        self.logger.info(
            "Memory monitor started",
            threshold=self.threshold,
            memory_limit_bytes=self._memory_limit()
        )

    async def stop(self):
        """Stop the monitor loops."""
        self.running = False
        for task in (self._check_task, self._stats_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._check_task = None
        self._stats_task = None

        self.logger.info("Memory monitor stopped")

    def _memory_limit(self) -> int:
        if self.memory_limit_bytes:
            return self.memory_limit_bytes
        return psutil.virtual_memory().total

    def memory_usage_ratio(self) -> float:
        """Resident set size relative to the memory limit."""
        return self._process.memory_info().rss / self._memory_limit()

    async def check_memory(self) -> bool:
        """Run one memory check; return True when cleanup was triggered."""
        ratio = self.memory_usage_ratio()
        if self.metrics:
            self.metrics.set_gauge("process_memory_usage_ratio", ratio)

        if ratio <= self.threshold:
            return False

        self.logger.warning(
            "High memory usage detected",
            usage_percent=round(ratio * 100, 2),
            threshold_percent=round(self.threshold * 100, 2)
        )
        deleted = await self.cache_service.cleanup_old_entries(self.retention_days)
        collected = gc.collect()
        self.logger.info("Memory cleanup completed", deleted_entries=deleted, gc_collected=collected)
        return True

    def memory_stats(self) -> Dict[str, Any]:
        """Detailed memory statistics for the current process."""
        info = self._process.memory_info()
        system = psutil.virtual_memory()
        return {
            "rss_mb": round(info.rss / (1024 * 1024), 2),
            "vms_mb": round(info.vms / (1024 * 1024), 2),
            "limit_mb": round(self._memory_limit() / (1024 * 1024), 2),
            "usage_percent": round(self.memory_usage_ratio() * 100, 2),
            "system_available_mb": round(system.available / (1024 * 1024), 2)
        }

    async def _check_loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.check_interval_seconds)
                await self.check_memory()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in memory check loop", error=str(e))

    async def _stats_loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.stats_interval_seconds)
                self.logger.info("Memory statistics", **self.memory_stats())
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in memory stats loop", error=str(e))
