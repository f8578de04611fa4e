"""
Benchmark workers for the cache-ceiling harness.

This module provides workers that each keep one tracked record alive by
periodically resetting its TTL, and a pool that runs them concurrently.
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict, List, Optional

import psutil

from ttlcap.client import StoreClient
from ttlcap.errors import RecordMissingError
from ttlcap.tracking import UsageTrackingEntry

logger = logging.getLogger(__name__)


class BenchmarkWorker:
    """Keeps one tracked record alive with touch-and-read operations."""

    def __init__(
        self,
        worker_id: str,
        client: StoreClient,
        entry: UsageTrackingEntry,
        operations: int,
        ttl: int,
        max_interval: float,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the worker.

        Args:
            worker_id: Name used in logs
            client: The worker's own store session
            entry: Tracking entry of the record this worker owns
            operations: Number of touches to perform
            ttl: TTL to reset the record to on every touch
            max_interval: Upper bound of the random delay before each touch
            rng: Random generator owned by this worker
        """
        self.worker_id = worker_id
        self.client = client
        self.entry = entry
        self.operations = operations
        self.ttl = ttl
        self.max_interval = max_interval
        self.rng = rng or random.Random()

        self.completed = 0
        self.error: Optional[str] = None
        self.finished = False

    async def run(self) -> None:
        try:
            for _ in range(self.operations):
                await asyncio.sleep(self.rng.uniform(0, self.max_interval))

                record = await self.client.touch_and_get(self.entry.key, self.ttl)
                if record is None:
                    raise RecordMissingError(self.entry)

                logger.debug(
                    f"Kept record alive key={self.entry.record_id}, TTL={record.ttl}"
                )
                self.entry.hit()
                self.completed += 1
        except Exception as e:
            self.error = str(e)
            logger.error(
                f"Worker {self.worker_id}: problem with record digest="
                f"{self.entry.key.digest.hex()}: {e}"
            )
        finally:
            self.finished = True
            await self.client.close()


class BenchmarkWorkerPool:
    """Runs a fixed set of workers concurrently, one task per worker."""

    def __init__(self, workers: Optional[List[BenchmarkWorker]] = None):
        self.workers: List[BenchmarkWorker] = list(workers or [])
        self._tasks: List[asyncio.Task] = []
        self._start_time: Optional[float] = None

    def add(self, worker: BenchmarkWorker) -> None:
        if self._tasks:
            raise RuntimeError("Cannot add workers to a running pool")
        self.workers.append(worker)

    def start(self) -> None:
        self._start_time = time.time()
        self._tasks = [
            asyncio.create_task(worker.run(), name=worker.worker_id)
            for worker in self.workers
        ]
        logger.info(f"Started {len(self._tasks)} workers")

    async def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the workers to finish.

        Workers still running when the timeout elapses are left running.

        Returns:
            True if every worker finished in time
        """
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} workers still running after {timeout}s")
        return not pending

    @property
    def failed(self) -> List[BenchmarkWorker]:
        return [worker for worker in self.workers if worker.error is not None]

    def get_metrics(self) -> Dict[str, Any]:
        """Get current pool metrics."""
        process = psutil.Process()
        mem_info = process.memory_info()
        uptime = time.time() - self._start_time if self._start_time else 0.0

        return {
            "uptime_seconds": uptime,
            "workers": len(self.workers),
            "finished": sum(1 for worker in self.workers if worker.finished),
            "failed": len(self.failed),
            "total_hits": sum(worker.entry.hits for worker in self.workers),
            "memory_usage_mb": mem_info.rss / (1024 * 1024),
            "cpu_percent": psutil.cpu_percent(),
        }
