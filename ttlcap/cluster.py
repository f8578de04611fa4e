"""
In-process multi-node key-value store with store-managed TTL expiry.

The cluster routes each key to one node by its digest, runs a periodic
sweep that physically removes expired records, and tracks a topology
generation so scans can detect node additions and removals.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, List, Optional

from ttlcap.client import Key, StoreClient
from ttlcap.errors import StoreError
from ttlcap.node import StoreNode

logger = logging.getLogger(__name__)


class ClusterStore:
    """A set of StoreNodes behaving like one distributed store."""

    def __init__(
        self,
        node_count: int = 3,
        namespaces: Iterable[str] = ("lru_test",),
        bucket_count: int = 100,
        bucket_width: int = 1,
        sweep_period: float = 1.0,
        latency: float = 0.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize the cluster.

        Args:
            node_count: Number of nodes to start with (at least 1)
            namespaces: Namespaces every node serves
            bucket_count: Number of buckets in each node's TTL histogram
            bucket_width: Width of each TTL histogram bucket in seconds
            sweep_period: Seconds between expiry sweeps
            latency: Simulated round trip per client operation, in seconds
            clock: Returns the current time in seconds; defaults to time.monotonic
        """
        if node_count < 1:
            raise ValueError(f"node_count must be >= 1, got {node_count}")
        self.namespaces = frozenset(namespaces)
        self.bucket_count = bucket_count
        self.bucket_width = bucket_width
        self.sweep_period = sweep_period
        self.latency = latency
        self.clock = clock or time.monotonic
        self.nodes: List[StoreNode] = []
        self.generation = 0
        self.next_id = 1
        self._sweeper: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        for _ in range(node_count):
            self._create_node()

    def _create_node(self) -> StoreNode:
        node = StoreNode(
            id=f"n{self.next_id}",
            namespaces=self.namespaces,
            bucket_count=self.bucket_count,
            bucket_width=self.bucket_width,
            clock=self.clock,
        )
        self.next_id += 1
        self.nodes.append(node)
        return node

    def get_node(self, node_id: str) -> StoreNode:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise StoreError(f"Unknown node '{node_id}'")

    def node_for(self, key: Key) -> StoreNode:
        """Route a key to the node that owns it."""
        index = int.from_bytes(key.digest[:4], "little") % len(self.nodes)
        return self.nodes[index]

    def add_node(self) -> StoreNode:
        node = self._create_node()
        logger.info(f"Adding node {node.id}")
        self._rebalance()
        return node

    def remove_node(self, node_id: str) -> None:
        node = self.get_node(node_id)
        if len(self.nodes) == 1:
            raise StoreError("Cannot remove the last node")
        logger.info(f"Removing node {node_id}")
        self.nodes.remove(node)
        self._rebalance(extra=[node])

    def _rebalance(self, extra: Iterable[StoreNode] = ()) -> None:
        """Move every record to the node that owns it after a topology change."""
        moved = []
        for node in list(self.nodes) + list(extra):
            for (namespace, set_name), store in node.stores.items():
                moved.extend((namespace, set_name, key, entry) for key, entry in store.records.items())
            node.stores.clear()
        for namespace, set_name, key, entry in moved:
            store = self.node_for(key).store_for(namespace, set_name, create=True)
            store.records[key] = entry
        self.generation += 1
        logger.debug(f"Rebalanced {len(moved)} records, generation={self.generation}")

    def object_count(self, namespace: str, set_name: str) -> int:
        return sum(node.object_count(namespace, set_name) for node in self.nodes)

    def sweep(self) -> int:
        """Run one expiry sweep on every node."""
        removed = sum(node.sweep() for node in self.nodes)
        if removed:
            logger.debug(f"Sweep removed {removed} expired records")
        return removed

    def connect(self, name: str = "client") -> StoreClient:
        """Open a new client session."""
        return StoreClient(self, name=name)

    async def start(self) -> None:
        """Start the background expiry sweeper."""
        if self._sweeper is not None:
            return
        self._stop_event = asyncio.Event()
        self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._stop_event.set()
        await self._sweeper
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_period)
            except asyncio.TimeoutError:
                self.sweep()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
