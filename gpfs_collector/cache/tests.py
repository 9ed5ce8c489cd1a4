"""
Tests for the aggregation cache.
"""
import threading
import unittest

from .aggregate_cache import EMPTY_SNAPSHOT, AggregationCache
from ..aggregation.pool_aggregator import AggregationResult
from ..datasources.base import CollectionFailure
from ..schema.models import FsPoolId, PoolGroupAggregate


def result(groups=1, computed_at=100.0, read_rate=1.0):
    aggregates = tuple(
        PoolGroupAggregate(key=FsPoolId('fs1', f"pool{i}"), members=frozenset({f"nsd{i}"}), read_rate=read_rate)
        for i in range(groups)
    )
    unassigned = tuple(f"free{i}" for i in range(groups))
    return AggregationResult(groups=aggregates, unassigned=unassigned, computed_at=computed_at)


class TestAggregationCache(unittest.TestCase):
    """Test cases for publish, failure accounting and stale marking."""

    def setUp(self):
        self.cache = AggregationCache(stale_after_failures=3)

    def test_starts_empty(self):
        self.assertIs(self.cache.current(), EMPTY_SNAPSHOT)
        self.assertTrue(self.cache.current().is_empty)
        self.assertIsNone(self.cache.current().age())

    def test_publish(self):
        snapshot = self.cache.publish(result(groups=2))
        self.assertIs(self.cache.current(), snapshot)
        self.assertEqual(len(snapshot.groups), 2)
        self.assertEqual(snapshot.generation, 1)
        self.assertEqual(snapshot.age(now=105.0), 5.0)
        self.assertFalse(snapshot.stale)

    def test_failure_keeps_previous_data(self):
        published = self.cache.publish(result(read_rate=42.0))
        snapshot = self.cache.record_failure(CollectionFailure("timed out", 'mmlsnsd'))
        self.assertEqual(snapshot.groups, published.groups)
        self.assertEqual(snapshot.refreshed_at, published.refreshed_at)
        self.assertEqual(snapshot.consecutive_failures, 1)
        self.assertEqual(snapshot.last_error, "mmlsnsd: timed out")
        self.assertFalse(snapshot.stale)

    def test_stale_after_threshold(self):
        self.cache.publish(result())
        for _ in range(2):
            self.assertFalse(self.cache.record_failure("boom").stale)
        snapshot = self.cache.record_failure("boom")
        self.assertTrue(snapshot.stale)
        self.assertEqual(snapshot.consecutive_failures, 3)
        self.assertEqual(len(snapshot.groups), 1)

    def test_success_clears_stale(self):
        for _ in range(3):
            self.cache.record_failure("boom")
        self.assertTrue(self.cache.current().stale)
        snapshot = self.cache.publish(result())
        self.assertFalse(snapshot.stale)
        self.assertEqual(snapshot.consecutive_failures, 0)
        self.assertEqual(snapshot.total_failures, 3)
        self.assertIsNone(snapshot.last_error)

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            AggregationCache(stale_after_failures=0)

    def test_to_dict(self):
        data = self.cache.publish(result()).to_dict()
        self.assertEqual(data['groups'][0]['key'], 'fs1-pool0')
        self.assertEqual(data['unassigned_nsds'], ['free0'])

    def test_readers_never_see_partial_snapshot(self):
        stop = threading.Event()
        torn = []

        def reader():
            while not stop.is_set():
                snapshot = self.cache.current()
                if len(snapshot.groups) != len(snapshot.unassigned_nsds):
                    torn.append(snapshot)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()
        try:
            for i in range(2000):
                self.cache.publish(result(groups=i % 5 + 1, computed_at=float(i)))
                if i % 7 == 0:
                    self.cache.record_failure("boom")
        finally:
            stop.set()
            for thread in readers:
                thread.join()

        self.assertEqual(torn, [])
        self.assertEqual(self.cache.current().generation, 2000)


if __name__ == '__main__':
    unittest.main()
