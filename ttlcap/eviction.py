"""
Bounded, early-terminating eviction scan.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ttlcap.client import Priority, Record, ScanAction, ScanPolicy, StoreClient
from ttlcap.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass
class EvictionResult:
    """Outcome of one eviction pass."""
    removed: int
    target: int
    visited: int = 0
    error: Optional[str] = None

    @property
    def shortfall(self) -> int:
        return max(0, self.target - self.removed)


def eviction_scan_policy() -> ScanPolicy:
    """Metadata-only, high priority, abort on topology change."""
    return ScanPolicy(
        priority=Priority.HIGH,
        include_payload=False,
        fail_on_cluster_change=True,
        concurrent_nodes=True,
    )


class EvictionExecutor:
    """Deletes records at or below a TTL watermark until a target is met."""

    def __init__(self, client: StoreClient, policy: Optional[ScanPolicy] = None):
        self.client = client
        self.policy = policy or eviction_scan_policy()

    async def run(
        self, namespace: str, set_name: str, ttl_watermark: int, remove_target: int
    ) -> EvictionResult:
        """
        Scan a set and delete records whose remaining TTL is at or below
        the watermark, stopping once remove_target records are gone.

        The pass is best effort: a shortfall is reported, not retried.
        Store errors end the pass and are reported in the result.
        """
        result = EvictionResult(removed=0, target=remove_target)
        if remove_target <= 0:
            return result

        # Slots claimed by deletes in flight on concurrent node scans
        claimed = 0

        async def on_record(record: Record) -> ScanAction:
            nonlocal claimed
            key = record.key
            if key.namespace != namespace or key.set_name != set_name:
                return ScanAction.CONTINUE
            if record.ttl > ttl_watermark:
                return ScanAction.CONTINUE
            if claimed >= remove_target:
                return ScanAction.STOP

            claimed += 1
            deleted = await self.client.delete(key)
            if deleted:
                result.removed += 1
                logger.debug(f"Removed record digest={key.digest.hex()} ttl={record.ttl}")
            else:
                claimed -= 1

            if result.removed >= remove_target:
                return ScanAction.STOP
            return ScanAction.CONTINUE

        try:
            result.visited = await self.client.scan_all(namespace, set_name, on_record, self.policy)
        except StoreError as e:
            result.error = str(e)
            logger.error(f"Eviction scan of {namespace}/{set_name} stopped: {e}")
        finally:
            logger.info(f">>Removed {result.removed}/{remove_target} objects")
        return result
