"""
Usage tracking and post-run verification.

Each tracked record is kept alive by exactly one benchmark worker, which
bumps the entry's hit counter after every successful touch. Once the
workers are done the verifier reads the counters and checks which records
survived.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List

from ttlcap.client import Key, StoreClient
from ttlcap.errors import PreconditionError, StoreError, VerificationError
from ttlcap.histogram import count_objects

logger = logging.getLogger(__name__)


@dataclass
class UsageTrackingEntry:
    """One tracked record and how often its worker hit it."""
    key: Key
    record_id: str
    hits: int = 0

    def hit(self) -> None:
        self.hits += 1


class UsageTracker:
    """All tracked entries, indexed by record id."""

    def __init__(self):
        self._entries: Dict[str, UsageTrackingEntry] = {}

    def track(self, key: Key, record_id: str) -> UsageTrackingEntry:
        if record_id in self._entries:
            raise ValueError(f"Record {record_id} is already tracked")
        entry = UsageTrackingEntry(key=key, record_id=record_id)
        self._entries[record_id] = entry
        return entry

    def get(self, record_id: str) -> UsageTrackingEntry:
        return self._entries[record_id]

    def __iter__(self) -> Iterator[UsageTrackingEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class CheckResult:
    """Pass/fail outcome of one verification step."""
    name: str
    failures: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failures

    def fail(self, message: str) -> None:
        logger.error(message)
        self.failures.append(message)


class Verifier:
    """Checks tracked records and the set's object count against expectations."""

    def __init__(self, client: StoreClient, tracker: UsageTracker, namespace: str, set_name: str):
        self.client = client
        self.tracker = tracker
        self.namespace = namespace
        self.set_name = set_name

    async def check_empty_before_start(self) -> None:
        count = await count_objects(self.client, self.namespace, self.set_name)
        if count > 0:
            raise PreconditionError(
                f"Cache should be empty before starting but has {count} objects. "
                "Either wait until existing items have expired or the TTL and "
                "sweep period of the namespace are misconfigured"
            )

    async def verify_not_empty(self) -> CheckResult:
        """Some records are still around before their TTL."""
        result = CheckResult("cache items still around before their TTL")
        try:
            count = await count_objects(self.client, self.namespace, self.set_name)
        except StoreError as e:
            result.fail(f"Cannot count objects: {e}")
            return result
        if count == 0:
            result.fail("Cache should have some items")
        return result

    async def verify_survivors(self) -> CheckResult:
        """Right after the workers finish: hit records exist, unhit ones do not."""
        result = CheckResult("expected records have been kept alive")
        for entry in self.tracker:
            try:
                exists = await self.client.get(entry.key) is not None
            except StoreError as e:
                result.fail(f"Cannot read record {entry.record_id}: {e}")
                continue
            if entry.hits == 0 and exists:
                result.fail(
                    f"Record should not be in cache: {entry.record_id}, test hits={entry.hits}"
                )
            elif entry.hits > 0 and not exists:
                result.fail(
                    f"Record should be in cache: {entry.record_id}, test hits={entry.hits}"
                )
        return result

    async def verify_expired(self) -> CheckResult:
        """After the drain window: no tracked record exists, hit or not."""
        result = CheckResult("all cache records disappeared after TTL")
        for entry in self.tracker:
            try:
                exists = await self.client.get(entry.key) is not None
            except StoreError as e:
                result.fail(f"Cannot read record {entry.record_id}: {e}")
                continue
            if exists:
                result.fail(
                    f"Record should not be in cache: {entry.record_id}, test hits={entry.hits}"
                )
        return result

    async def verify_drained(self) -> CheckResult:
        """
        The set must be entirely empty.

        Raises:
            VerificationError: If any object remains
        """
        count = await count_objects(self.client, self.namespace, self.set_name)
        if count > 0:
            raise VerificationError(f"Cache not empty, it has {count} objects")
        return CheckResult("cache is now entirely empty")
