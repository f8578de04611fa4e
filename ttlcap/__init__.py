"""
Size ceiling for a TTL-evicting cache set hosted by a distributed store.

This package provides the capacity controller, its eviction executor and
histogram aggregation, plus the workload and verification harness used to
exercise them against an in-process cluster.
"""

from .cluster import ClusterStore
from .config import EvictionGoal, RunConfig
from .controller import CapacityController, EvictionDecision, decide
from .eviction import EvictionExecutor, EvictionResult
from .harness import CacheCeilingHarness, HarnessReport
from .histogram import HistogramAggregator, TTLHistogram

__all__ = [
    'CacheCeilingHarness',
    'CapacityController',
    'ClusterStore',
    'EvictionDecision',
    'EvictionExecutor',
    'EvictionGoal',
    'EvictionResult',
    'HarnessReport',
    'HistogramAggregator',
    'RunConfig',
    'TTLHistogram',
    'decide',
]
