"""
End-to-end harness for the cache-size controller.

The harness loads the cache, runs the capacity controller and the
workload generator in the background, drives a pool of keep-alive
workers, and verifies which records survive and that the set drains
once everything has expired.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ttlcap.client import Key
from ttlcap.cluster import ClusterStore
from ttlcap.config import RunConfig
from ttlcap.controller import CapacityController
from ttlcap.generator import WorkloadGenerator, generate_records
from ttlcap.tracking import CheckResult, UsageTracker, Verifier
from ttlcap.worker import BenchmarkWorker, BenchmarkWorkerPool

logger = logging.getLogger(__name__)


@dataclass
class HarnessReport:
    """Everything a run produced, for display."""
    checks: List[CheckResult] = field(default_factory=list)
    workers_finished_in_time: bool = False
    controller: Dict[str, Any] = field(default_factory=dict)
    generator: Dict[str, Any] = field(default_factory=dict)
    pool: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)


class CacheCeilingHarness:
    """Orchestrates one run against a cluster."""

    def __init__(self, cluster: ClusterStore, config: RunConfig):
        self.cluster = cluster
        self.config = config
        self.rng = random.Random(config.seed)
        self.tracker = UsageTracker()
        self.controller: Optional[CapacityController] = None
        self.generator: Optional[WorkloadGenerator] = None
        self.pool = BenchmarkWorkerPool()
        self._background: List[asyncio.Task] = []

    def _child_rng(self) -> random.Random:
        return random.Random(self.rng.getrandbits(64))

    def stop(self) -> None:
        """Stop the background controller and generator."""
        if self.controller is not None:
            self.controller.stop()
        if self.generator is not None:
            self.generator.stop()

    def _start_background(self) -> None:
        config = self.config
        self.controller = CapacityController(
            self.cluster.connect("controller"),
            config.namespace,
            config.set_name,
            config.eviction_goal(),
        )
        self.generator = WorkloadGenerator(
            self.cluster.connect("generator"),
            config.namespace,
            config.set_name,
            config.bin_name,
            ttl=config.ttl,
            max_batch_size=config.growth_max_batch,
            interval=config.generator_interval,
            payload_size=config.payload_size,
            rng=self._child_rng(),
        )
        self._background = [
            asyncio.create_task(self.controller.run(), name="controller"),
            asyncio.create_task(self.generator.run(), name="generator"),
        ]

    async def _provision_workers(self, client) -> None:
        config = self.config
        for n in range(config.threads):
            record_ids = await generate_records(
                client, config.namespace, config.set_name, config.bin_name,
                config.ttl, 1, self.rng, config.payload_size,
            )
            if not record_ids:
                logger.error(f"Could not create a tracked record for worker {n}")
                continue
            record_id = record_ids[0]
            entry = self.tracker.track(Key(config.namespace, config.set_name, record_id), record_id)
            self.pool.add(BenchmarkWorker(
                worker_id=f"worker-{n}",
                client=self.cluster.connect(f"worker-{n}"),
                entry=entry,
                operations=config.operations_per_thread,
                ttl=config.ttl,
                max_interval=config.max_touch_interval,
                rng=self._child_rng(),
            ))

    async def run(self) -> HarnessReport:
        """
        Run the whole scenario.

        Raises:
            PreconditionError: If the set is not empty at the start
            VerificationError: If the set is not empty after the drain window
        """
        config = self.config
        report = HarnessReport()
        client = self.cluster.connect("harness")
        verifier = Verifier(client, self.tracker, config.namespace, config.set_name)
        try:
            await verifier.check_empty_before_start()

            logger.info(f"Creating {config.initial_size} random records to test in LRU cache")
            await generate_records(
                client, config.namespace, config.set_name, config.bin_name,
                config.ttl, config.initial_size, self.rng, config.payload_size,
            )

            logger.info(
                f"Running tests: threads={config.threads}, "
                f"operations per thread={config.operations_per_thread}, ttl={config.ttl} seconds"
            )
            self._start_background()
            await self._provision_workers(client)
            self.pool.start()
            report.workers_finished_in_time = await self.pool.join(config.worker_join_timeout)

            self.stop()
            await asyncio.wait(self._background)

            report.checks.append(await verifier.verify_not_empty())
            report.checks.append(await verifier.verify_survivors())

            logger.info(f"Waiting {config.drain_window}s for records to expire and be swept")
            await asyncio.sleep(config.drain_window)

            report.checks.append(await verifier.verify_expired())
            report.checks.append(await verifier.verify_drained())
        finally:
            self.stop()
            await client.close()
            report.pool = self.pool.get_metrics()
            if self.controller is not None:
                report.controller = {
                    "ticks": self.controller.ticks,
                    "failed_ticks": self.controller.failed_ticks,
                    "removed": self.controller.total_removed,
                }
            if self.generator is not None:
                report.generator = {
                    "batches": self.generator.batches,
                    "records": self.generator.records_written,
                }
        return report
