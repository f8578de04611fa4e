"""
Configuration classes for the cache-ceiling harness.

This module contains the run configuration dataclasses shared across
the controller, the workload generator and the benchmark workers.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class EvictionGoal:
    """Size ceiling the capacity controller enforces."""
    goal_max_objects: int
    check_interval: float = 1.0  # seconds between controller ticks
    config_ttl: int = 10  # cache TTL, used to cut off histogram rendering


@dataclass
class RunConfig:
    """Configuration for one harness run."""
    namespace: str = "lru_test"
    set_name: str = "mycache"
    bin_name: str = "bin1"

    # Must match the store's default TTL and sweep period
    ttl: int = 10
    sweep_period: float = 1.0

    goal_max_objects: int = 800
    initial_size: int = 1000
    growth_max_batch: int = 200
    check_interval: float = 1.0
    generator_interval: float = 1.0
    payload_size: int = 16

    threads: int = 32
    operations_per_thread: int = 10
    keepalive_fraction: float = 0.1
    worker_join_timeout: float = 60.0

    node_count: int = 3
    histogram_buckets: int = 100
    seed: Optional[int] = None

    def __post_init__(self):
        if not self.namespace or not self.set_name:
            raise ValueError("namespace and set_name must be non-empty")
        if self.ttl < 1:
            raise ValueError(f"ttl must be >= 1, got {self.ttl}")
        if not 0 < self.keepalive_fraction < 1:
            raise ValueError(
                f"keepalive_fraction must be in (0, 1), got {self.keepalive_fraction}"
            )

    @property
    def sweep_margin(self) -> float:
        """Two sweep cycles, enough for the store to reclaim expired records."""
        return 2 * self.sweep_period

    @property
    def drain_window(self) -> float:
        return self.ttl + self.sweep_margin

    @property
    def max_touch_interval(self) -> float:
        return self.ttl * self.keepalive_fraction

    def eviction_goal(self) -> EvictionGoal:
        return EvictionGoal(
            goal_max_objects=self.goal_max_objects,
            check_interval=self.check_interval,
            config_ttl=self.ttl,
        )
