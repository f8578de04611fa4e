import unittest
from unittest.mock import patch

from ttlcap.client import Key
from ttlcap.cluster import ClusterStore
from ttlcap.errors import AggregationError, MalformedHistogramError
from ttlcap.histogram import (
    HistogramAggregator,
    TTLHistogram,
    count_objects,
    format_histogram,
    parse_histogram_info,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def histogram_reply(buckets, width=1, units='seconds'):
    return (
        f"units={units}:hist-width={len(buckets)}:bucket-width={width}:"
        f"buckets={','.join(str(count) for count in buckets)}"
    )


class TestParseHistogram(unittest.TestCase):
    def test_parse(self):
        """Test parsing a well-formed node reply."""
        reply = parse_histogram_info(
            'units=seconds:hist-width=100:bucket-width=1:buckets=0,0,973,4,2'
        )
        self.assertEqual(reply.unit, 'seconds')
        self.assertEqual(reply.bucket_width, 1)
        self.assertEqual(reply.buckets, (0, 0, 973, 4, 2))

    def test_malformed(self):
        """Test that missing or non-numeric fields are rejected."""
        for text in (
            'garbage',
            'units=seconds:bucket-width=1',
            'units=seconds:bucket-width=x:buckets=1,2',
            'units=seconds:bucket-width=1:buckets=1,,2',
            'units=seconds:bucket-width=0:buckets=1,2',
            'units=seconds:bucket-width=1:buckets=1,-2',
        ):
            with self.assertRaises(MalformedHistogramError, msg=text):
                parse_histogram_info(text)


class TestTTLHistogram(unittest.TestCase):
    def test_totals(self):
        histogram = TTLHistogram(bucket_width=2, buckets=(0, 0, 5, 10, 0))
        self.assertEqual(histogram.total_objects, 15)
        self.assertEqual(histogram.total_buckets, 5)
        self.assertEqual(histogram.bucket_ttl(3), 6)
        self.assertEqual(histogram.first_nonempty_bucket(), 2)

    def test_empty(self):
        histogram = TTLHistogram(bucket_width=1, buckets=(0, 0, 0))
        self.assertIsNone(histogram.first_nonempty_bucket())

    def test_format_stops_at_config_ttl(self):
        """Test that buckets beyond the cache TTL are not rendered."""
        histogram = TTLHistogram(bucket_width=1, buckets=tuple(range(100)))
        text = format_histogram(histogram, config_ttl=10)
        idx_line = next(line for line in text.splitlines() if line.startswith('Idx:'))
        self.assertEqual(len(idx_line.split('|')), 11)
        self.assertIn('totalObjects=4950', text)


class TestHistogramAggregator(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.cluster = ClusterStore(node_count=3, clock=FakeClock())
        self.client = self.cluster.connect()
        self.aggregator = HistogramAggregator(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def load(self, count, ttl):
        for i in range(count):
            await self.client.put(Key('lru_test', 'mycache', f'ttl{ttl}-{i}'), None, ttl=ttl)

    async def test_merge_across_nodes(self):
        """Test that the merged histogram sums every node's buckets."""
        await self.load(40, ttl=3)
        await self.load(25, ttl=7)

        histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.total_objects, 65)
        self.assertEqual(histogram.buckets[3], 40)
        self.assertEqual(histogram.buckets[7], 25)
        self.assertEqual(histogram.total_buckets, 100)
        self.assertEqual(sum(histogram.buckets), histogram.total_objects)
        self.assertTrue(all(count >= 0 for count in histogram.buckets))

    async def test_malformed_node_is_skipped(self):
        """Test that one malformed reply out of three leaves the other two."""
        replies = {
            'n1': histogram_reply([0, 2, 3]),
            'n2': 'units=seconds:bucket-width=1:buckets=oops',
            'n3': histogram_reply([1, 0, 4]),
        }
        for node in self.cluster.nodes:
            node.info = lambda request, node_id=node.id: replies[node_id]

        histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.buckets, (1, 2, 7))
        self.assertEqual(histogram.total_objects, 10)

    async def test_unreachable_node_is_skipped(self):
        await self.load(30, ttl=5)
        offline = self.cluster.nodes[1]
        missing = offline.object_count('lru_test', 'mycache')
        offline.online = False

        histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.total_objects, 30 - missing)

    async def test_empty_reply_is_skipped(self):
        with patch.object(self.cluster.nodes[0], 'info', return_value=''):
            histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.total_objects, 0)

    async def test_width_mismatch_node_is_skipped(self):
        """Test that a node disagreeing on bucket width is left out of the merge."""
        await self.load(30, ttl=5)
        odd = self.cluster.nodes[2]
        dropped = odd.object_count('lru_test', 'mycache')
        with patch.object(odd, 'info', return_value=histogram_reply([0] * 100, width=2)):
            histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.bucket_width, 1)
        self.assertEqual(histogram.total_objects, 30 - dropped)

    async def test_length_mismatch_node_is_skipped(self):
        await self.load(30, ttl=5)
        odd = self.cluster.nodes[2]
        dropped = odd.object_count('lru_test', 'mycache')
        with patch.object(odd, 'info', return_value=histogram_reply([9] * 50)):
            histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.total_buckets, 100)
        self.assertEqual(histogram.total_objects, 30 - dropped)

    async def test_unit_mismatch_node_is_skipped(self):
        """Test that a node reporting other units does not block aggregation."""
        replies = {
            'n1': histogram_reply([0, 2, 3]),
            'n2': histogram_reply([0, 1, 1]),
            'n3': histogram_reply([50, 50, 50], units='milliseconds'),
        }
        for node in self.cluster.nodes:
            node.info = lambda request, node_id=node.id: replies[node_id]

        histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.buckets, (0, 3, 4))
        self.assertEqual(histogram.unit, 'seconds')

    async def test_first_node_mismatch_does_not_set_shape(self):
        """Test that a rejected first reply does not decide the merged width."""
        replies = {
            'n1': histogram_reply([4, 4], width=5, units='minutes'),
            'n2': histogram_reply([1, 0, 2]),
            'n3': histogram_reply([0, 3, 0]),
        }
        for node in self.cluster.nodes:
            node.info = lambda request, node_id=node.id: replies[node_id]

        histogram = await self.aggregator.fetch('lru_test', 'mycache')
        self.assertEqual(histogram.bucket_width, 1)
        self.assertEqual(histogram.buckets, (1, 3, 2))

    async def test_every_node_mismatched(self):
        with patch.object(self.cluster.nodes[0], 'info', return_value=histogram_reply([1], units='minutes')):
            for node in self.cluster.nodes[1:]:
                node.online = False
            with self.assertRaises(AggregationError):
                await self.aggregator.fetch('lru_test', 'mycache')

    async def test_no_node_reports(self):
        """Test that a pass with no contributing node is an error."""
        for node in self.cluster.nodes:
            node.online = False
        with self.assertRaises(AggregationError):
            await self.aggregator.fetch('lru_test', 'mycache')

    async def test_count_objects(self):
        """Test the set object count summed across nodes."""
        await self.load(12, ttl=5)
        self.assertEqual(await count_objects(self.client, 'lru_test', 'mycache'), 12)
        self.assertEqual(await count_objects(self.client, 'lru_test', 'othercache'), 0)


if __name__ == '__main__':
    unittest.main()
