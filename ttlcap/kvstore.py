import math
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple


@dataclass
class StoredRecord:
    """Represents a single stored record with payload and expiry metadata."""
    payload: Any
    expires_at: float
    generation: int = 1


class RecordStore:
    """
    In-memory record store for one namespace/set on one node.

    Features:
    - TTL (Time To Live) on every record, reset by touch
    - Expired records are invisible to reads but remain resident until swept
    - TTL histogram of resident records, bucketed by remaining lifetime
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        """
        Initialize the RecordStore.

        Args:
            clock: Returns the current time in seconds; defaults to time.monotonic
        """
        self.records: dict = {}
        self._clock = clock or time.monotonic

    def _get_current_time(self) -> float:
        """Get current time in seconds."""
        return self._clock()

    def _is_expired(self, entry: StoredRecord, now: Optional[float] = None) -> bool:
        """Check if a record has expired."""
        if now is None:
            now = self._get_current_time()
        return now >= entry.expires_at

    def remaining_ttl(self, entry: StoredRecord, now: Optional[float] = None) -> int:
        """
        Remaining lifetime in whole seconds, never negative.

        Rounded up, the way a store node reports record TTLs: a record with
        9.4s left reports 10 and lands in bucket 10 of the histogram.
        """
        if now is None:
            now = self._get_current_time()
        return max(0, int(math.ceil(entry.expires_at - now)))

    def put(self, key: Any, payload: Any, ttl: int) -> StoredRecord:
        """
        Create or replace a record.

        Args:
            key: The record key
            payload: Opaque record payload
            ttl: Time to live in seconds
        """
        previous = self.records.get(key)
        generation = previous.generation + 1 if previous is not None else 1
        entry = StoredRecord(
            payload=payload,
            expires_at=self._get_current_time() + ttl,
            generation=generation,
        )
        self.records[key] = entry
        return entry

    def get(self, key: Any) -> Optional[StoredRecord]:
        """
        Get a live record by key.

        Returns:
            The stored record, or None if missing or expired
        """
        entry = self.records.get(key)
        if entry is None or self._is_expired(entry):
            return None
        return entry

    def touch(self, key: Any, ttl: int) -> Optional[StoredRecord]:
        """
        Reset the TTL of a live record.

        Returns:
            The touched record, or None if missing or expired
        """
        entry = self.get(key)
        if entry is None:
            return None
        entry.expires_at = self._get_current_time() + ttl
        entry.generation += 1
        return entry

    def delete(self, key: Any) -> bool:
        """
        Delete a record.

        Returns:
            True if a live record was deleted, False otherwise
        """
        entry = self.records.pop(key, None)
        return entry is not None and not self._is_expired(entry)

    def exists(self, key: Any) -> bool:
        return self.get(key) is not None

    def sweep(self) -> int:
        """
        Physically remove expired records.

        Returns:
            Number of records removed
        """
        now = self._get_current_time()
        expired_keys = [
            key for key, entry in self.records.items()
            if self._is_expired(entry, now)
        ]
        for key in expired_keys:
            del self.records[key]
        return len(expired_keys)

    def scan(self) -> List[Tuple[Any, StoredRecord, int]]:
        """Snapshot of live records as (key, record, remaining TTL)."""
        now = self._get_current_time()
        return [
            (key, entry, self.remaining_ttl(entry, now))
            for key, entry in list(self.records.items())
            if not self._is_expired(entry, now)
        ]

    def ttl_histogram(self, bucket_width: int, bucket_count: int) -> List[int]:
        """
        Count live records per remaining-TTL bucket.

        Bucket i holds records whose reported (rounded-up) remaining TTL
        falls in [i * bucket_width, (i + 1) * bucket_width); the last bucket
        also absorbs anything longer. Eviction watermarks compare against the
        same reported TTL.
        """
        buckets = [0] * bucket_count
        for _, _, ttl in self.scan():
            index = min(ttl // bucket_width, bucket_count - 1)
            buckets[index] += 1
        return buckets

    def clear(self) -> None:
        """Clear all records from the store."""
        self.records.clear()

    def __contains__(self, key: Any) -> bool:
        """Check if a key exists and is not expired."""
        return self.exists(key)

    def __len__(self) -> int:
        """Number of resident records, including expired ones not yet swept."""
        return len(self.records)
