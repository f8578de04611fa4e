"""
TTL histogram aggregation.

Every node reports, per namespace/set, how many of its resident records
fall in each remaining-TTL bucket. The aggregator queries all nodes and
merges those reports into one cluster-wide histogram.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ttlcap.client import StoreClient
from ttlcap.errors import (
    AggregationError,
    HistogramMismatchError,
    MalformedHistogramError,
    StoreError,
)

logger = logging.getLogger(__name__)

EXPECTED_UNITS = "seconds"
EMPTY_REPLIES = ("", "ns_type=unknown")


@dataclass(frozen=True)
class NodeHistogram:
    """One node's TTL histogram reply."""
    unit: str
    bucket_width: int
    buckets: Tuple[int, ...]


@dataclass(frozen=True)
class TTLHistogram:
    """Object counts per TTL bucket, bucket 0 closest to expiry."""
    bucket_width: int
    buckets: Tuple[int, ...]
    unit: str = EXPECTED_UNITS

    @property
    def total_objects(self) -> int:
        return sum(self.buckets)

    @property
    def total_buckets(self) -> int:
        return len(self.buckets)

    def bucket_ttl(self, index: int) -> int:
        """Lower TTL bound of a bucket, in seconds."""
        return index * self.bucket_width

    def first_nonempty_bucket(self) -> Optional[int]:
        for index, count in enumerate(self.buckets):
            if count > 0:
                return index
        return None


def histogram_request(namespace: str, set_name: str) -> str:
    return f"histogram:namespace={namespace};set={set_name};type=ttl"


def parse_histogram_info(text: str) -> NodeHistogram:
    """
    Parse a histogram info reply.

    Example reply:
        units=seconds:hist-width=100:bucket-width=1:buckets=0,0,973,4,2

    Raises:
        MalformedHistogramError: If a field is missing or not a number
    """
    fields = {}
    for part in text.strip().split(":"):
        name, sep, value = part.partition("=")
        if sep:
            fields[name] = value
    try:
        unit = fields["units"]
        bucket_width = int(fields["bucket-width"])
        buckets = tuple(int(count) for count in fields["buckets"].split(","))
    except (KeyError, ValueError) as e:
        raise MalformedHistogramError(f"Cannot parse histogram '{text}': {e}") from e
    if bucket_width < 1:
        raise MalformedHistogramError(f"Invalid bucket width {bucket_width}")
    if any(count < 0 for count in buckets):
        raise MalformedHistogramError(f"Negative bucket count in '{text}'")
    return NodeHistogram(unit=unit, bucket_width=bucket_width, buckets=buckets)


async def fetch_ttl_histogram(
    client: StoreClient, node_id: str, namespace: str, set_name: str
) -> Optional[NodeHistogram]:
    """Query one node; None when the node has nothing to report."""
    reply = await client.info(node_id, histogram_request(namespace, set_name))
    if reply.strip() in EMPTY_REPLIES:
        return None
    return parse_histogram_info(reply)


def check_compatible(
    reply: NodeHistogram,
    node_id: str,
    bucket_width: Optional[int],
    merged: Optional[List[int]],
) -> None:
    """
    Check that a node's histogram can be merged with the ones before it.

    Raises:
        HistogramMismatchError: On unit, bucket-width or length mismatch
    """
    if reply.unit != EXPECTED_UNITS:
        raise HistogramMismatchError(f"Unexpected units: {reply.unit} from node {node_id}")
    if merged is None:
        return
    if reply.bucket_width != bucket_width:
        raise HistogramMismatchError(
            f"Node {node_id} reports bucket width {reply.bucket_width}, expected {bucket_width}"
        )
    if len(reply.buckets) != len(merged):
        raise HistogramMismatchError(
            f"Node {node_id} reports {len(reply.buckets)} buckets, expected {len(merged)}"
        )


class HistogramAggregator:
    """Merges per-node TTL histograms for one namespace/set."""

    def __init__(self, client: StoreClient):
        self.client = client

    async def fetch(self, namespace: str, set_name: str) -> TTLHistogram:
        """
        Query every node and merge the replies.

        A node is left out of this pass when it is unreachable, has nothing
        to report, answers with an unparseable histogram or disagrees with
        the nodes merged so far on unit, bucket width or bucket count.

        Raises:
            AggregationError: If no node contributed
        """
        bucket_width = None
        merged: Optional[List[int]] = None

        for node_id in await self.client.get_nodes():
            try:
                reply = await fetch_ttl_histogram(self.client, node_id, namespace, set_name)
                if reply is None:
                    logger.debug(f"Node {node_id} has no histogram for {namespace}/{set_name}")
                    continue
                check_compatible(reply, node_id, bucket_width, merged)
            except (StoreError, AggregationError) as e:
                logger.warning(f"Skipping node {node_id} for {namespace}/{set_name}: {e}")
                continue

            if merged is None:
                bucket_width = reply.bucket_width
                merged = list(reply.buckets)
            else:
                for index, count in enumerate(reply.buckets):
                    merged[index] += count

        if merged is None:
            raise AggregationError(f"No node reported a histogram for {namespace}/{set_name}")
        return TTLHistogram(bucket_width=bucket_width, buckets=tuple(merged), unit=EXPECTED_UNITS)


async def count_objects(client: StoreClient, namespace: str, set_name: str) -> int:
    """Total number of resident objects in a set, summed across nodes."""
    total = 0
    for node_id in await client.get_nodes():
        reply = await client.info(node_id, f"sets/{namespace}/{set_name}")
        if reply.strip() in EMPTY_REPLIES:
            continue
        # objects=0:tombstones=0:memory_data_bytes=0:...
        fields = dict(part.split("=", 1) for part in reply.strip().rstrip(";").split(":") if "=" in part)
        try:
            total += int(fields["objects"])
        except (KeyError, ValueError) as e:
            raise StoreError(f"Cannot parse set info from node {node_id}: '{reply}'") from e
    return total


def format_histogram(histogram: TTLHistogram, config_ttl: int) -> str:
    """Render the buckets up to the configured TTL as an aligned table."""
    header, ttls, counts = [], [], []
    for index, count in enumerate(histogram.buckets):
        bucket_ttl = histogram.bucket_ttl(index)
        # Buckets past the cache TTL can never hold records
        if bucket_ttl > config_ttl:
            break
        header.append(f"{index:3d}")
        ttls.append(f"{bucket_ttl:3d}")
        counts.append(f"{count:3d}")
    line = "-" * 80
    summary = (
        f"totalObjects={histogram.total_objects}, unit={histogram.unit}, "
        f"durationPerBucket={histogram.bucket_width}"
    )
    return (
        f"{line}\nTTL Buckets Histogram:\n"
        f"Idx: {'|'.join(header)}\n"
        f"TTL: {'|'.join(ttls)}\n"
        f" # : {'|'.join(counts)}\n"
        f"{line}\n{summary}"
    )
