"""
Tests for the nmon and Prometheus writers.
"""
import os
import stat
import unittest
from dataclasses import replace
from tempfile import TemporaryDirectory

from .base import Writer
from .factory import WriterFactory
from .multi_writer import MultiWriter
from .nmon_writer import NmonWriter, atomic_write, format_device_groups, format_rates
from .prometheus_writer import PrometheusWriter
from ..cache.aggregate_cache import EMPTY_SNAPSHOT, AggregateSnapshot
from ..core.writer_config import WriterConfig
from ..schema.models import (
    Fileset, FilesystemCapacity, FsPoolId, GraceState, NsdCapacity, Pool, PoolGroupAggregate, QuotaKind, QuotaRecord,
)

ALICE = dict(filesystem='fs1', kind='usr', name='alice', fileset='root')


def snapshot(stale=False):
    groups = (
        PoolGroupAggregate(key=FsPoolId('fs1', 'data'), members=frozenset({'nsd1', 'nsd2'}),
                           read_rate=120000000.0, write_rate=2.5, devices=('dm-1', 'dm-2')),
        PoolGroupAggregate(key=FsPoolId('fs1', 'system'), members=frozenset({'nsd3'}),
                           reset_members=frozenset({'nsd3'})),
    )
    quota = QuotaRecord(kind=QuotaKind.USER, entity_id=1000, entity_name='alice', filesystem='fs1',
                        block_usage_bytes=2048, block_soft_bytes=1024, block_hard_bytes=4096,
                        files_usage=1, files_soft=10, files_hard=20, block_in_doubt_bytes=512,
                        files_in_doubt=3, block_grace=GraceState.parse('expired'), fileset='root')
    pool = Pool('fs1', 'data', 4096, 1024, disk_count=2, free_fragments_bytes=128)
    nsd = NsdCapacity(filesystem='fs1', name='nsd1', pool='data', size_bytes=2048, free_bytes=512,
                      is_metadata=False, is_data=True, free_fragments_bytes=64)
    return AggregateSnapshot(groups=groups, refreshed_at=1700000000.0, stale=stale,
                             unassigned_nsds=('nsd9',), pools=(pool,), quotas=(quota,),
                             nsd_capacities=(nsd,),
                             fs_capacities=(FilesystemCapacity(filesystem='fs1', size_bytes=8192, free_bytes=2048),),
                             filesets=(Fileset('fs1', 'root', max_inodes=100000, alloc_inodes=65792),),
                             generation=1)


class TestNmonFormat(unittest.TestCase):
    """Test cases for the nmon file formats."""

    def test_format_rates(self):
        self.assertEqual(format_rates(snapshot().groups),
                         "fs1-data 120000000.0 2.5\nfs1-system 0.0 0.0\n")

    def test_format_device_groups_skips_empty(self):
        devices = {FsPoolId('fs2', 'data'): ('sdb',), FsPoolId('fs1', 'data'): ('dm-1', 'dm-2'),
                   FsPoolId('fs1', 'system'): ()}
        self.assertEqual(format_device_groups(devices), "fs1-data dm-1 dm-2\nfs2-data sdb\n")


class TestNmonWriter(unittest.TestCase):
    """Test cases for the nmon feed writer."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.runtime_dir = os.path.join(self.temp_dir.name, 'run')
        self.writer = NmonWriter({'runtime_dir': self.runtime_dir})
        self.writer.prepare()

    def tearDown(self):
        self.temp_dir.cleanup()

    def read(self, name):
        with open(os.path.join(self.runtime_dir, name), 'r', encoding='utf-8') as f:
            return f.read()

    def test_write(self):
        self.assertTrue(self.writer.write(snapshot()))
        self.assertTrue(self.read('nmon-groups').startswith("fs1-data 120000000.0"))
        self.assertEqual(self.read('nmon-devices'), "fs1-data dm-1 dm-2\n")
        self.assertEqual(sorted(os.listdir(self.runtime_dir)), ['nmon-devices', 'nmon-groups'])
        self.assertEqual(self.writer.writes, 1)

    def test_stale_snapshot_leaves_feed_untouched(self):
        self.writer.write(snapshot())
        before = self.read('nmon-groups')
        changed = replace(snapshot(stale=True), groups=())
        self.assertTrue(self.writer.write(changed))
        self.assertEqual(self.read('nmon-groups'), before)
        self.assertEqual(self.writer.writes, 1)

    def test_stale_written_when_configured(self):
        writer = NmonWriter({'runtime_dir': self.runtime_dir, 'skip_when_stale': False})
        self.assertTrue(writer.write(snapshot(stale=True)))
        self.assertEqual(writer.writes, 1)

    def test_empty_snapshot_not_written(self):
        self.assertTrue(self.writer.write(EMPTY_SNAPSHOT))
        self.assertFalse(os.path.exists(os.path.join(self.runtime_dir, 'nmon-groups')))

    def test_atomic_write_replaces(self):
        path = os.path.join(self.runtime_dir, 'feed')
        atomic_write(path, "one\n")
        atomic_write(path, "two\n")
        with open(path, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "two\n")
        self.assertEqual(stat.S_IMODE(os.stat(path).st_mode), 0o644)
        self.assertEqual(os.listdir(self.runtime_dir), ['feed'])

    def test_write_failure_returns_false(self):
        writer = NmonWriter({'nmon_rates_file': os.path.join(self.temp_dir.name, 'missing', 'feed')})
        self.assertFalse(writer.write(snapshot()))


class TestPrometheusWriter(unittest.TestCase):
    """Test cases for the Prometheus writer; no HTTP server is started."""

    def setUp(self):
        self.writer = PrometheusWriter({'prometheus_port': 0})

    def value(self, name, /, **labels):
        return self.writer.prometheus_registry.get_sample_value(name, labels)

    def test_render(self):
        self.assertTrue(self.writer.write(snapshot()))
        data = dict(filesystem='fs1', pool='data')
        self.assertEqual(self.value('gpfs_pool_read_bytes_per_second', **data), 1.2e8)
        self.assertEqual(self.value('gpfs_pool_members', **data), 2.0)
        self.assertEqual(self.value('gpfs_pool_counter_resets', filesystem='fs1', pool='system'), 1.0)
        self.assertEqual(self.value('gpfs_pool_free_bytes', **data), 1024.0)
        self.assertEqual(self.value('gpfs_pool_disks', **data), 2.0)
        self.assertEqual(self.value('gpfs_quota_grace_seconds', **ALICE), 0.0)
        self.assertEqual(self.value('gpfs_collector_unassigned_nsds'), 1.0)
        self.assertEqual(self.value('gpfs_collector_stale'), 0.0)
        self.assertIn('gpfs_pool_read_bytes_per_second{', self.writer.render())
        self.assertFalse(self.writer.server_started)

    def test_capacity_and_fileset_series(self):
        self.writer.write(snapshot())
        nsd = dict(filesystem='fs1', pool='data', nsd='nsd1', metadata='no', data='yes')
        self.assertEqual(self.value('gpfs_nsd_size_bytes', **nsd), 2048.0)
        self.assertEqual(self.value('gpfs_nsd_free_bytes', **nsd), 512.0)
        self.assertEqual(self.value('gpfs_nsd_free_fragments_bytes', **nsd), 64.0)
        self.assertEqual(self.value('gpfs_pool_free_fragments_bytes', filesystem='fs1', pool='data'), 128.0)
        self.assertEqual(self.value('gpfs_filesystem_size_bytes', filesystem='fs1'), 8192.0)
        self.assertEqual(self.value('gpfs_filesystem_free_bytes', filesystem='fs1'), 2048.0)
        self.assertIsNone(self.value('gpfs_filesystem_free_fragments_bytes', filesystem='fs1'))
        self.assertEqual(self.value('gpfs_fileset_max_inodes', filesystem='fs1', fileset='root'), 100000.0)
        self.assertEqual(self.value('gpfs_fileset_alloc_inodes', filesystem='fs1', fileset='root'), 65792.0)

    def test_quota_series(self):
        self.writer.write(snapshot())
        self.assertEqual(self.value('gpfs_quota_block_usage_bytes', **ALICE), 2048.0)
        self.assertEqual(self.value('gpfs_quota_block_in_doubt_bytes', **ALICE), 512.0)
        self.assertEqual(self.value('gpfs_quota_files_usage', **ALICE), 1.0)
        self.assertEqual(self.value('gpfs_quota_files_soft_limit', **ALICE), 10.0)
        self.assertEqual(self.value('gpfs_quota_files_hard_limit', **ALICE), 20.0)
        self.assertEqual(self.value('gpfs_quota_files_in_doubt', **ALICE), 3.0)

    def test_vanished_group_is_dropped(self):
        self.writer.write(snapshot())
        self.writer.write(replace(snapshot(), groups=snapshot().groups[:1], quotas=()))
        self.assertIsNone(self.value('gpfs_pool_members', filesystem='fs1', pool='system'))
        self.assertIsNone(self.value('gpfs_quota_block_usage_bytes', **ALICE))
        self.assertEqual(self.value('gpfs_pool_members', filesystem='fs1', pool='data'), 2.0)

    def test_scrape_during_write_sees_every_series(self):
        self.writer.write(snapshot())
        scraped = []
        labels = self.writer.pool_read_rate.labels

        def scrape_then_label(*args, **kwargs):
            self.writer.render()
            scraped.append((self.value('gpfs_pool_total_bytes', filesystem='fs1', pool='data'),
                            self.value('gpfs_quota_block_usage_bytes', **ALICE)))
            return labels(*args, **kwargs)

        self.writer.pool_read_rate.labels = scrape_then_label
        self.assertTrue(self.writer.write(replace(snapshot(), generation=2)))
        self.assertTrue(scraped)
        self.assertEqual(set(scraped), {(4096.0, 2048.0)})

    def test_stale_without_export(self):
        writer = PrometheusWriter({'prometheus_port': 0, 'export_when_stale': False})
        writer.write(snapshot())
        writer.write(snapshot(stale=True))
        registry = writer.prometheus_registry
        self.assertEqual(registry.get_sample_value('gpfs_collector_stale', {}), 1.0)
        self.assertIsNone(registry.get_sample_value('gpfs_pool_read_bytes_per_second',
                                                    {'filesystem': 'fs1', 'pool': 'data'}))
        self.assertNotIn('gpfs_pool_read_bytes_per_second{', writer.render())


class FailingWriter(Writer):
    def write(self, snapshot, loop_iteration=1):
        raise RuntimeError("disk full")


class TestFactory(unittest.TestCase):
    """Test cases for writer selection."""

    def test_nmon(self):
        with TemporaryDirectory() as temp_dir:
            writer = WriterFactory.create_writer_from_config(WriterConfig(runtime_dir=temp_dir))
            self.assertIsInstance(writer, NmonWriter)

    def test_both(self):
        with TemporaryDirectory() as temp_dir:
            config = WriterConfig(output_format='both', runtime_dir=temp_dir, prometheus_port=0)
            writer = WriterFactory.create_writer_from_config(config)
            self.assertIsInstance(writer, MultiWriter)
            self.assertEqual([type(w) for w in writer.writers], [NmonWriter, PrometheusWriter])

    def test_unwritable_feed_directory(self):
        with TemporaryDirectory() as temp_dir:
            blocker = os.path.join(temp_dir, 'file')
            with open(blocker, 'w', encoding='utf-8') as f:
                f.write('x')
            with self.assertRaises(OSError):
                WriterFactory.create_writer_from_config(WriterConfig(runtime_dir=os.path.join(blocker, 'run')))

    def test_multi_writer_isolates_failures(self):
        prometheus = PrometheusWriter({'prometheus_port': 0})
        writer = MultiWriter([FailingWriter(), prometheus])
        self.assertFalse(writer.write(snapshot()))
        self.assertIn('gpfs_pool_members', prometheus.render())
        self.assertEqual(writer.failures, {'FailingWriter': 1, 'PrometheusWriter': 0})


if __name__ == '__main__':
    unittest.main()
