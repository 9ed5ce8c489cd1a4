"""
Tests for NSD pool aggregation.
"""
import unittest

from .pool_aggregator import (
    NsdPoolAggregator, Topology, compute_rate, count_pool_disks, resolve_membership,
)
from .views import find_pool, pool_io_rates, quota_status
from ..cache.aggregate_cache import AggregationCache
from ..schema.models import (
    Availability, Disk, DiskStatus, FsPoolId, GraceState, IoSample, Nsd, Pool, QuotaKind, QuotaRecord,
)

MB = 1000 * 1000


def nsd(name, fs='fs1', pool='data', device=None):
    return Nsd(name=name, servers=('node1',), disk_name=name, pool=pool, filesystem=fs,
               device=device or f"/dev/{name}")


def disk(name, fs='fs1', pool='data'):
    return Disk(name=name, nsd_name=name, size_bytes=None, failure_group='1',
                status=DiskStatus.parse('ready'), availability=Availability.parse('up'),
                pool=pool, is_metadata=False, is_data=True, filesystem=fs)


def sample(name, read, write, ts):
    return IoSample(nsd=name, read_bytes=read, write_bytes=write, timestamp=ts)


class TestMembership(unittest.TestCase):
    """Test cases for grouping NSDs into (filesystem, pool)."""

    def test_grouped_by_own_pool(self):
        membership = resolve_membership([nsd('a'), nsd('b'), nsd('c', pool='system')])
        self.assertEqual(membership.groups[FsPoolId('fs1', 'data')], frozenset({'a', 'b'}))
        self.assertEqual(membership.group_of('c'), FsPoolId('fs1', 'system'))
        self.assertEqual(membership.devices[FsPoolId('fs1', 'data')], ('a', 'b'))

    def test_pool_joined_from_disks(self):
        # mmlsnsd -X does not report pools; mmlsdisk does
        nsds = [nsd('a', fs=None, pool=None), nsd('b', fs='fs2', pool=None)]
        disks = [disk('a', fs='fs1', pool='fast'), disk('b', fs='fs1', pool='slow'), disk('b', fs='fs2', pool='slow')]
        membership = resolve_membership(nsds, disks)
        self.assertEqual(membership.group_of('a'), FsPoolId('fs1', 'fast'))
        self.assertEqual(membership.group_of('b'), FsPoolId('fs2', 'slow'))
        self.assertEqual(membership.unassigned, ())

    def test_unresolvable_nsd_is_unassigned(self):
        membership = resolve_membership([nsd('a'), nsd('free', fs=None, pool=None)])
        self.assertEqual(membership.unassigned, ('free',))
        self.assertIsNone(membership.group_of('free'))

    def test_nsd_in_exactly_one_group(self):
        rows = [nsd('a', pool='data'), nsd('a', pool='system')]
        membership = resolve_membership(rows)
        self.assertEqual(membership.group_of('a'), FsPoolId('fs1', 'data'))
        self.assertEqual(sum(len(members) for members in membership.groups.values()), 1)

    def test_count_pool_disks(self):
        # counted from mmlsdisk, including disks served by other nodes
        disks = [disk('a'), disk('b'), disk('remote'), disk('a'), disk('c', fs='fs2')]
        pools = count_pool_disks([Pool('fs1', 'data', 100, 50), Pool('fs1', 'system', 10, 5)], disks)
        self.assertEqual(pools[0].disk_count, 3)
        self.assertEqual(pools[1].disk_count, 0)

    def test_disk_count_ignores_local_filtering(self):
        topology = Topology(nsds=(nsd('a'),), disks=(disk('a'), disk('b')),
                            pools=(Pool('fs1', 'data', 100, 50),))
        result = NsdPoolAggregator().refresh(topology, [])
        self.assertEqual(result.pools[0].disk_count, 2)
        self.assertEqual(result.group('fs1', 'data').members, frozenset({'a'}))


class TestComputeRate(unittest.TestCase):
    """Test cases for single NSD rates."""

    def test_cold_start(self):
        rate = compute_rate(None, sample('a', 100, 100, 10.0))
        self.assertEqual((rate.read_rate, rate.write_rate, rate.reset), (0.0, 0.0, False))

    def test_rate(self):
        rate = compute_rate(sample('a', 0, 1000, 10.0), sample('a', 500, 3000, 12.0))
        self.assertEqual(rate.read_rate, 250.0)
        self.assertEqual(rate.write_rate, 1000.0)

    def test_counter_reset(self):
        rate = compute_rate(sample('a', 5000, 100, 10.0), sample('a', 10, 600, 11.0))
        self.assertTrue(rate.reset)
        self.assertEqual(rate.read_rate, 0.0)
        self.assertEqual(rate.write_rate, 500.0)

    def test_no_elapsed_time(self):
        rate = compute_rate(sample('a', 0, 0, 10.0), sample('a', 500, 500, 10.0))
        self.assertEqual(rate.read_rate, 0.0)


class TestNsdPoolAggregator(unittest.TestCase):
    """Test cases for the stateful aggregator."""

    def setUp(self):
        self.topology = Topology(nsds=(nsd('a'), nsd('b'), nsd('c', pool='system')))
        self.aggregator = NsdPoolAggregator()

    def test_group_rate_is_sum_of_members(self):
        self.aggregator.refresh(self.topology, [sample('a', 0, 0, 100.0), sample('b', 0, 0, 100.0)], now=100.0)
        result = self.aggregator.refresh(
            self.topology, [sample('a', 500 * MB, 0, 105.0), sample('b', 100 * MB, 0, 105.0)], now=105.0)
        group = result.group('fs1', 'data')
        self.assertEqual(group.read_rate, 120 * MB)
        self.assertEqual(group.write_rate, 0.0)
        self.assertEqual(result.computed_at, 105.0)

    def test_first_refresh_reports_zero(self):
        result = self.aggregator.refresh(self.topology, [sample('a', 10 * MB, 10 * MB, 1.0)], now=1.0)
        self.assertEqual(result.group('fs1', 'data').read_rate, 0.0)
        self.assertIn('a', self.aggregator.previous_samples)

    def test_equal_deltas_give_equal_rates(self):
        other = NsdPoolAggregator()
        self.aggregator.refresh(self.topology, [sample('a', 100, 0, 10.0)])
        other.refresh(self.topology, [sample('a', 7000, 0, 50.0)])

        first = self.aggregator.refresh(self.topology, [sample('a', 600, 500, 15.0)])
        second = other.refresh(self.topology, [sample('a', 7500, 500, 55.0)])
        rates = (first.group('fs1', 'data').read_rate, second.group('fs1', 'data').read_rate)
        self.assertEqual(rates, (100.0, 100.0))
        self.assertEqual(first.group('fs1', 'data').write_rate, second.group('fs1', 'data').write_rate)

        again = self.aggregator.refresh(self.topology, [sample('a', 1100, 1000, 20.0)])
        self.assertEqual(again.group('fs1', 'data').read_rate, 100.0)
        self.assertEqual(again.group('fs1', 'data').write_rate, 100.0)

    def test_reset_member_tagged(self):
        self.aggregator.refresh(self.topology, [sample('a', 1000, 0, 1.0), sample('b', 0, 0, 1.0)])
        result = self.aggregator.refresh(self.topology, [sample('a', 0, 0, 2.0), sample('b', 300, 0, 2.0)])
        group = result.group('fs1', 'data')
        self.assertEqual(group.reset_members, frozenset({'a'}))
        self.assertEqual(group.read_rate, 300.0)

    def test_vanished_nsd_is_forgotten(self):
        self.aggregator.refresh(self.topology, [sample('a', 0, 0, 1.0), sample('b', 0, 0, 1.0)])
        self.aggregator.refresh(self.topology, [sample('b', 10, 0, 2.0)])
        self.assertNotIn('a', self.aggregator.previous_samples)
        # 'a' comes back: a cold start for it, not a rate across the gap
        result = self.aggregator.refresh(self.topology, [sample('a', 900, 0, 3.0), sample('b', 20, 0, 3.0)])
        self.assertEqual(result.rates['a'].read_rate, 0.0)
        self.assertEqual(result.rates['b'].read_rate, 10.0)

    def test_group_without_samples_is_kept(self):
        result = self.aggregator.refresh(self.topology, [])
        self.assertEqual(result.group('fs1', 'system').read_rate, 0.0)
        self.assertIsNone(result.group('fs1', 'missing'))

    def test_latest_duplicate_sample_wins(self):
        self.aggregator.refresh(self.topology, [sample('a', 0, 0, 1.0)])
        result = self.aggregator.refresh(self.topology, [sample('a', 50, 0, 2.0), sample('a', 300, 0, 3.0)])
        self.assertEqual(result.rates['a'].read_rate, 150.0)

    def test_reset(self):
        self.aggregator.refresh(self.topology, [sample('a', 0, 0, 1.0)])
        self.aggregator.reset()
        self.assertEqual(self.aggregator.previous_samples, {})


class TestViews(unittest.TestCase):
    """Test cases for the read-only snapshot views."""

    def test_pool_views(self):
        cache = AggregationCache()
        aggregator = NsdPoolAggregator()
        topology = Topology(nsds=(nsd('a'),), disks=(disk('a'),), pools=(Pool('fs1', 'data', 1000, 250),))
        aggregator.refresh(topology, [sample('a', 0, 0, 1.0)])
        snapshot = cache.publish(aggregator.refresh(topology, [sample('a', 10, 20, 2.0)]))

        capacity = find_pool(snapshot.pools, 'fs1', 'data')
        self.assertEqual(capacity.used_percent, 75)
        self.assertEqual(capacity.disk_count, 1)
        self.assertIsNone(find_pool(snapshot.pools, 'fs1', 'other'))

        rates = pool_io_rates(snapshot)
        self.assertEqual((rates[0].read_rate, rates[0].write_rate, rates[0].members), (10.0, 20.0, 1))
        self.assertFalse(rates[0].stale)

    def test_quota_status(self):
        record = QuotaRecord(kind=QuotaKind.USER, entity_id=1, entity_name='alice', filesystem='fs1',
                             block_usage_bytes=2048, block_soft_bytes=1024, block_hard_bytes=4096,
                             files_usage=0, files_soft=0, files_hard=0,
                             block_grace=GraceState.parse('2 hours'))
        status = quota_status([record])[0]
        self.assertTrue(status.over_soft_limit)
        self.assertFalse(status.over_hard_limit)
        self.assertEqual(status.grace_seconds, 7200)

        unlimited = quota_status([QuotaRecord(kind=QuotaKind.GROUP, entity_id=2, entity_name='staff',
                                              filesystem='fs1', block_usage_bytes=5, block_soft_bytes=0,
                                              block_hard_bytes=0, files_usage=0, files_soft=0, files_hard=0)])[0]
        self.assertFalse(unlimited.over_soft_limit)
        self.assertEqual(unlimited.grace_seconds, -1)

    def test_quota_files_and_in_doubt(self):
        record = QuotaRecord(kind=QuotaKind.FILESET, entity_id=3, entity_name='scratch', filesystem='fs1',
                             block_usage_bytes=0, block_soft_bytes=0, block_hard_bytes=0,
                             files_usage=120, files_soft=100, files_hard=200,
                             block_in_doubt_bytes=4096, files_in_doubt=7)
        status = quota_status([record])[0]
        self.assertEqual((status.files_usage, status.files_soft_limit, status.files_hard_limit), (120, 100, 200))
        self.assertEqual((status.in_doubt_bytes, status.files_in_doubt), (4096, 7))


if __name__ == '__main__':
    unittest.main()
