import random
import unittest

from ttlcap.client import Key
from ttlcap.cluster import ClusterStore
from ttlcap.tracking import UsageTracker
from ttlcap.worker import BenchmarkWorker, BenchmarkWorkerPool


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestBenchmarkWorker(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.cluster = ClusterStore(node_count=3)
        self.tracker = UsageTracker()
        self.client = self.cluster.connect('setup')

    async def asyncTearDown(self):
        await self.client.close()

    async def tracked(self, record_id, create=True):
        key = Key('lru_test', 'mycache', record_id)
        if create:
            await self.client.put(key, {'bin1': b'x'}, ttl=10)
        return self.tracker.track(key, record_id)

    def make_worker(self, entry, operations=5, max_interval=0.001):
        return BenchmarkWorker(
            worker_id=f'worker-{entry.record_id}',
            client=self.cluster.connect(entry.record_id),
            entry=entry,
            operations=operations,
            ttl=10,
            max_interval=max_interval,
            rng=random.Random(0),
        )

    async def test_keeps_record_alive(self):
        """Test that every touch counts as a hit."""
        entry = await self.tracked('a')
        worker = self.make_worker(entry, operations=5)
        await worker.run()

        self.assertEqual(entry.hits, 5)
        self.assertEqual(worker.completed, 5)
        self.assertIsNone(worker.error)
        self.assertTrue(worker.finished)
        self.assertTrue(worker.client.closed)

    async def test_missing_record_stops_worker(self):
        """Test that a missing record ends only that worker."""
        healthy = await self.tracked('healthy')
        missing = await self.tracked('missing', create=False)
        pool = BenchmarkWorkerPool([self.make_worker(healthy), self.make_worker(missing)])

        pool.start()
        self.assertTrue(await pool.join(timeout=5))

        self.assertEqual(healthy.hits, 5)
        self.assertEqual(missing.hits, 0)
        self.assertEqual([worker.entry.record_id for worker in pool.failed], ['missing'])
        self.assertIn('missing', pool.failed[0].error)

    async def test_join_timeout_leaves_workers_running(self):
        """Test that a bounded join returns without cancelling stragglers."""
        entry = await self.tracked('slow')
        worker = self.make_worker(entry, operations=100, max_interval=0.5)
        pool = BenchmarkWorkerPool([worker])

        pool.start()
        self.assertFalse(await pool.join(timeout=0.05))
        self.assertFalse(worker.finished)
        self.assertFalse(pool._tasks[0].cancelled())

    async def test_pool_metrics(self):
        entry = await self.tracked('m')
        pool = BenchmarkWorkerPool([self.make_worker(entry, operations=2)])
        pool.start()
        await pool.join(timeout=5)

        metrics = pool.get_metrics()
        self.assertEqual(metrics['workers'], 1)
        self.assertEqual(metrics['finished'], 1)
        self.assertEqual(metrics['failed'], 0)
        self.assertEqual(metrics['total_hits'], 2)
        self.assertGreater(metrics['memory_usage_mb'], 0)

    async def test_cannot_add_to_running_pool(self):
        entry = await self.tracked('r')
        pool = BenchmarkWorkerPool([self.make_worker(entry, operations=1)])
        pool.start()
        with self.assertRaises(RuntimeError):
            pool.add(self.make_worker(entry))
        await pool.join(timeout=5)


class TestKeepAliveScenario(unittest.IsolatedAsyncioTestCase):
    async def test_touch_every_second_against_ttl(self):
        """A record touched every 1s with a 10s TTL lives until TTL after the last touch."""
        clock = FakeClock()
        cluster = ClusterStore(node_count=3, sweep_period=1.0, clock=clock)
        client = cluster.connect()
        key = Key('lru_test', 'mycache', 'kept-alive')
        await client.put(key, None, ttl=10)

        for _ in range(10):
            clock.advance(1)
            self.assertIsNotNone(await client.touch_and_get(key, ttl=10))

        clock.advance(9.5)
        self.assertIsNotNone(await client.get(key))

        # TTL plus two sweep periods after the last touch
        clock.advance(0.5 + 2 * cluster.sweep_period)
        cluster.sweep()
        self.assertIsNone(await client.get(key))
        self.assertEqual(cluster.object_count('lru_test', 'mycache'), 0)
        await client.close()


if __name__ == '__main__':
    unittest.main()
