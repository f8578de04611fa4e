"""
Exception types shared across the cache-ceiling components.
"""

from typing import Any


class TTLCapError(Exception):
    """Base class for all errors raised by this package."""


class StoreError(TTLCapError):
    """A store operation failed."""


class NodeUnavailableError(StoreError):
    """A store node did not answer a request."""

    def __init__(self, node_id: str):
        super().__init__(f"Node {node_id} is unavailable")
        self.node_id = node_id


class ClusterChangedError(StoreError):
    """The cluster topology changed while a scan was running."""


class AggregationError(TTLCapError):
    """A histogram aggregation pass could not produce a result."""


class MalformedHistogramError(AggregationError):
    """A node answered with a histogram that could not be parsed."""


class HistogramMismatchError(AggregationError):
    """Nodes disagree on the unit, bucket width or bucket count."""


class RecordMissingError(TTLCapError):
    """A record that a worker keeps alive was not found."""

    def __init__(self, entry: Any):
        super().__init__(
            f"Record should still exist: {entry.record_id} "
            f"(digest={entry.key.digest.hex()})"
        )
        self.entry = entry


class PreconditionError(TTLCapError):
    """The cache was not in the expected state before the run."""


class VerificationError(TTLCapError):
    """A hard post-run check failed."""


class RunInterrupted(TTLCapError):
    """The run was stopped by SIGINT or SIGTERM."""
