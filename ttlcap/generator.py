"""
Background workload that grows the cache with fresh records.
"""

import asyncio
import logging
import random
import uuid
from typing import List, Optional

from ttlcap.client import Key, StoreClient
from ttlcap.errors import StoreError

logger = logging.getLogger(__name__)


async def generate_records(
    client: StoreClient,
    namespace: str,
    set_name: str,
    bin_name: str,
    ttl: int,
    count: int,
    rng: random.Random,
    payload_size: int = 16,
) -> List[str]:
    """
    Create `count` records with distinct ids and random payloads.

    A failed put is logged and skipped; the remaining records are still
    written.

    Returns:
        Ids of the records that were written
    """
    prefix = f"record_id-{uuid.UUID(int=rng.getrandbits(128), version=4)}-"
    record_ids = []
    for i in range(count):
        record_id = f"{prefix}{i}"
        payload = {bin_name: rng.randbytes(payload_size)}
        try:
            await client.put(Key(namespace, set_name, record_id), payload, ttl)
        except StoreError as e:
            logger.warning(f"Failed to write {record_id}: {e}")
            continue
        record_ids.append(record_id)
    return record_ids


class WorkloadGenerator:
    """Writes a random-sized batch of records every interval until stopped."""

    def __init__(
        self,
        client: StoreClient,
        namespace: str,
        set_name: str,
        bin_name: str,
        ttl: int,
        max_batch_size: int,
        interval: float = 1.0,
        payload_size: int = 16,
        rng: Optional[random.Random] = None,
    ):
        if max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {max_batch_size}")
        self.client = client
        self.namespace = namespace
        self.set_name = set_name
        self.bin_name = bin_name
        self.ttl = ttl
        self.max_batch_size = max_batch_size
        self.interval = interval
        self.payload_size = payload_size
        self.rng = rng or random.Random()
        self._stop_event = asyncio.Event()

        self.batches = 0
        self.records_written = 0

    def stop(self) -> None:
        self._stop_event.set()

    async def run_batch(self) -> int:
        size = self.rng.randrange(self.max_batch_size)
        written = await generate_records(
            self.client, self.namespace, self.set_name, self.bin_name,
            self.ttl, size, self.rng, self.payload_size,
        )
        self.batches += 1
        self.records_written += len(written)
        logger.debug(f"Generated {len(written)}/{size} records")
        return len(written)

    async def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_batch()
                except StoreError as e:
                    logger.error(f"Generator batch failed: {e}")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.client.close()
            logger.info(
                f"Generator stopped: batches={self.batches}, records={self.records_written}"
            )
