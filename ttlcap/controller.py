"""
Closed-loop cache-size controller.

On every tick the controller samples the cluster-wide TTL histogram,
checks it against the goal capacity and, when the goal is violated,
evicts records closest to natural expiry first.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ttlcap.client import StoreClient
from ttlcap.config import EvictionGoal
from ttlcap.eviction import EvictionExecutor, EvictionResult
from ttlcap.histogram import HistogramAggregator, TTLHistogram, format_histogram

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvictionDecision:
    """What one unsatisfied tick decided to do."""
    total_objects: int
    goal_max_objects: int
    objects_to_remove: int
    bucket_index: Optional[int] = None
    bucket_count: int = 0
    ttl_watermark: int = 0
    remove_count: int = 0

    @property
    def actionable(self) -> bool:
        return self.bucket_index is not None

    def describe(self) -> str:
        return (
            "LRU POLICY - State:\n"
            f"  Total Objects:              {self.total_objects}\n"
            f"  Goal Max Objects:           {self.goal_max_objects}\n"
            f"> Objects To Remove:          {self.objects_to_remove}\n"
            f"> Candidate Bucket Index:     {self.bucket_index}\n"
            f"  Candidate Bucket TTL:       {self.ttl_watermark}\n"
            f"> Candidate Bucket Remove:    {self.remove_count}/{self.bucket_count}"
        )


def decide(histogram: TTLHistogram, goal_max_objects: int) -> Optional[EvictionDecision]:
    """
    Decide how many records to evict and from which TTL bucket.

    Returns None when the goal is satisfied. Otherwise the candidate is the
    first non-empty bucket (closest to expiry); the watermark covers it and
    every bucket below it, and at most that bucket's count is targeted.
    """
    total = histogram.total_objects
    if total < goal_max_objects:
        return None

    deficit = total - goal_max_objects
    index = histogram.first_nonempty_bucket()
    if index is None:
        return EvictionDecision(total, goal_max_objects, deficit)

    count = histogram.buckets[index]
    return EvictionDecision(
        total_objects=total,
        goal_max_objects=goal_max_objects,
        objects_to_remove=deficit,
        bucket_index=index,
        bucket_count=count,
        ttl_watermark=histogram.bucket_ttl(index),
        remove_count=min(deficit, count),
    )


class CapacityController:
    """Periodically enforces a maximum object count on one namespace/set."""

    def __init__(self, client: StoreClient, namespace: str, set_name: str, goal: EvictionGoal):
        self.client = client
        self.namespace = namespace
        self.set_name = set_name
        self.goal = goal
        self.aggregator = HistogramAggregator(client)
        self.executor = EvictionExecutor(client)
        self._stop_event = asyncio.Event()

        self.ticks = 0
        self.failed_ticks = 0
        self.total_removed = 0
        self.last_decision: Optional[EvictionDecision] = None

    def stop(self) -> None:
        """Ask the loop to finish after the current tick."""
        self._stop_event.set()

    async def tick(self) -> Optional[EvictionResult]:
        """Sample, decide and, if needed, evict once."""
        self.ticks += 1
        histogram = await self.aggregator.fetch(self.namespace, self.set_name)
        logger.info("\n" + format_histogram(histogram, self.goal.config_ttl))

        decision = decide(histogram, self.goal.goal_max_objects)
        self.last_decision = decision
        if decision is None:
            return None
        if not decision.actionable:
            logger.warning("No candidate buckets found to remove from")
            return None

        logger.info(decision.describe())
        result = await self.executor.run(
            self.namespace, self.set_name, decision.ttl_watermark, decision.remove_count
        )
        self.total_removed += result.removed
        return result

    async def run(self) -> None:
        """Tick every check interval until stopped."""
        try:
            while not self._stop_event.is_set():
                try:
                    await self.tick()
                except Exception:
                    self.failed_ticks += 1
                    logger.exception(f"Controller tick {self.ticks} failed")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.goal.check_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.client.close()
            logger.info(
                f"Controller stopped: ticks={self.ticks}, failed={self.failed_ticks}, "
                f"removed={self.total_removed}"
            )
