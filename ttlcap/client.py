"""
Client sessions for the in-process cluster store.

Every actor (controller, generator, worker) opens its own StoreClient and
closes it when done. All operations are coroutines; each one costs a
simulated network round trip.
"""

import asyncio
import enum
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from ttlcap.errors import ClusterChangedError, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Key:
    """Identifies a record by namespace, set and user key."""
    namespace: str
    set_name: str
    user_key: str
    digest: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        digest = hashlib.sha1(f"{self.set_name}:{self.user_key}".encode()).digest()
        object.__setattr__(self, "digest", digest)


@dataclass
class Record:
    """A record as returned to a client."""
    key: Key
    payload: Any
    ttl: int
    generation: int


class Priority(enum.Enum):
    DEFAULT = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class ScanAction(enum.Enum):
    """Returned by a scan callback to continue or end the scan."""
    CONTINUE = 0
    STOP = 1


@dataclass
class ScanPolicy:
    priority: Priority = Priority.DEFAULT
    include_payload: bool = True
    fail_on_cluster_change: bool = False
    concurrent_nodes: bool = True


ScanCallback = Callable[[Record], Awaitable[ScanAction]]


class StoreClient:
    """A single session against a ClusterStore."""

    def __init__(self, cluster, name: str = "client"):
        self._cluster = cluster
        self.name = name
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _round_trip(self) -> None:
        if self._closed:
            raise StoreError(f"Client {self.name} is closed")
        await asyncio.sleep(self._cluster.latency)

    def _store_for(self, key: Key, create: bool = False):
        if key.namespace not in self._cluster.namespaces:
            raise StoreError(f"Unknown namespace '{key.namespace}'")
        node = self._cluster.node_for(key)
        node.check_online()
        return node.store_for(key.namespace, key.set_name, create=create)

    async def get_nodes(self) -> List[str]:
        await self._round_trip()
        return [node.id for node in self._cluster.nodes]

    async def info(self, node_id: str, request: str) -> str:
        await self._round_trip()
        return self._cluster.get_node(node_id).info(request)

    async def put(self, key: Key, payload: Any, ttl: int) -> None:
        await self._round_trip()
        self._store_for(key, create=True).put(key, payload, ttl)

    async def get(self, key: Key) -> Optional[Record]:
        await self._round_trip()
        store = self._store_for(key)
        entry = store.get(key) if store is not None else None
        if entry is None:
            return None
        return Record(key, entry.payload, store.remaining_ttl(entry), entry.generation)

    async def touch_and_get(self, key: Key, ttl: int) -> Optional[Record]:
        """Atomically reset the TTL of a record and read it back."""
        await self._round_trip()
        store = self._store_for(key)
        entry = store.touch(key, ttl) if store is not None else None
        if entry is None:
            return None
        return Record(key, entry.payload, store.remaining_ttl(entry), entry.generation)

    async def delete(self, key: Key) -> bool:
        await self._round_trip()
        store = self._store_for(key)
        return store.delete(key) if store is not None else False

    async def scan_all(
        self,
        namespace: str,
        set_name: str,
        callback: ScanCallback,
        policy: Optional[ScanPolicy] = None,
    ) -> int:
        """
        Visit every live record of a set, across all nodes.

        Args:
            namespace: Namespace to scan
            set_name: Set to scan
            callback: Awaited per record; returning ScanAction.STOP ends the scan
            policy: Scan options

        Returns:
            Number of records handed to the callback

        Raises:
            ClusterChangedError: If the topology changes mid-scan and the
                policy asks to fail on cluster change
        """
        policy = policy or ScanPolicy()
        await self._round_trip()
        if namespace not in self._cluster.namespaces:
            raise StoreError(f"Unknown namespace '{namespace}'")

        generation = self._cluster.generation
        nodes = list(self._cluster.nodes)
        state = {"stopped": False, "visited": 0}

        async def scan_node(node) -> None:
            try:
                await scan_records(node)
            except Exception:
                # Sibling node scans stop at their next record
                state["stopped"] = True
                raise

        async def scan_records(node) -> None:
            node.check_online()
            store = node.store_for(namespace, set_name)
            if store is None:
                return
            for key, entry, ttl in store.scan():
                if state["stopped"]:
                    return
                if policy.fail_on_cluster_change and self._cluster.generation != generation:
                    raise ClusterChangedError(
                        f"Cluster changed during scan of {namespace}/{set_name}"
                    )
                await self._round_trip()
                payload = entry.payload if policy.include_payload else None
                state["visited"] += 1
                action = await callback(Record(key, payload, ttl, entry.generation))
                if action is ScanAction.STOP:
                    state["stopped"] = True
                    return

        logger.debug(
            f"Scanning {namespace}/{set_name} on {len(nodes)} nodes "
            f"(priority={policy.priority.name}, concurrent={policy.concurrent_nodes})"
        )
        if policy.concurrent_nodes:
            outcomes = await asyncio.gather(
                *(scan_node(node) for node in nodes), return_exceptions=True
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
        else:
            for node in nodes:
                await scan_node(node)
                if state["stopped"]:
                    break
        return state["visited"]

    async def close(self) -> None:
        self._closed = True
