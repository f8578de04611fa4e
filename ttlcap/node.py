import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from ttlcap.errors import NodeUnavailableError
from ttlcap.kvstore import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class StoreNode:
    """One node of the in-process cluster, holding its resident records."""
    id: str
    namespaces: frozenset = frozenset({"lru_test"})
    bucket_count: int = 100
    bucket_width: int = 1
    online: bool = True
    clock: Callable[[], float] = time.monotonic
    stores: Dict[Tuple[str, str], RecordStore] = field(default_factory=dict)

    def check_online(self):
        if not self.online:
            raise NodeUnavailableError(self.id)

    def store_for(self, namespace: str, set_name: str, create: bool = False) -> Optional[RecordStore]:
        store = self.stores.get((namespace, set_name))
        if store is None and create:
            store = RecordStore(clock=self.clock)
            self.stores[(namespace, set_name)] = store
        return store

    def object_count(self, namespace: str, set_name: str) -> int:
        store = self.store_for(namespace, set_name)
        return len(store) if store is not None else 0

    def info(self, request: str) -> str:
        """Answer an info request the way a store node does."""
        self.check_online()
        if request.startswith("sets/"):
            parts = request.split("/")
            if len(parts) != 3:
                return ""
            _, namespace, set_name = parts
            if namespace not in self.namespaces:
                return "ns_type=unknown"
            objects = self.object_count(namespace, set_name)
            return (
                f"objects={objects}:tombstones=0:memory_data_bytes=0:"
                f"truncate_lut=0:stop-writes-count=0:disable-eviction=false;"
            )
        if request.startswith("histogram:"):
            params = dict(
                pair.split("=", 1)
                for pair in request[len("histogram:"):].split(";")
                if "=" in pair
            )
            namespace = params.get("namespace")
            if namespace not in self.namespaces:
                return "ns_type=unknown"
            if params.get("type") != "ttl":
                return ""
            store = self.store_for(namespace, params.get("set", ""))
            if store is not None:
                buckets = store.ttl_histogram(self.bucket_width, self.bucket_count)
            else:
                buckets = [0] * self.bucket_count
            return (
                f"units=seconds:hist-width={self.bucket_count}:"
                f"bucket-width={self.bucket_width}:"
                f"buckets={','.join(str(count) for count in buckets)}"
            )
        logger.debug(f"Node {self.id} ignoring unknown info request '{request}'")
        return ""

    def sweep(self) -> int:
        """Remove expired records from every set on this node."""
        if not self.online:
            return 0
        return sum(store.sweep() for store in self.stores.values())
