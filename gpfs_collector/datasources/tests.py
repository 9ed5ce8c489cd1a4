"""
Tests for the command and replay data sources.
"""
import os
import unittest
from tempfile import TemporaryDirectory

from .base import CollectionBuilder, CollectionFailure, local_nsds
from .block_stats import BlockStat, parse_stat, sample_nsds
from .command import CommandDataSource, run_command
from .device_cache import format_device_cache, load_local_devices, parse_device_cache
from .replay import ReplayDataSource, split_name
from ..aggregation.pool_aggregator import NsdPoolAggregator
from ..cache.aggregate_cache import AggregationCache
from ..core.collector import RefreshLoop
from ..schema.models import Nsd

MMLSFS = """\
mmlsfs::HEADER:version:reserved:reserved:deviceName:fieldName:data:remarks:
mmlsfs::0:1:::fs1:blockSize:4194304::
mmlsfs::0:1:::fs1:defaultMountPoint:%2Fgpfs%2Ffs1::
"""

MMGETSTATE = """\
mmgetstate::HEADER:version:reserved:reserved:nodeName:nodeNumber:state:quorum:nodesUp:totalNodes:remarks:cnfsState:
mmgetstate::0:1:::node1:1:active:1:2:2:quorum node:disabled:
"""

MMLSNSD = """\
mmlsnsd:nsd:HEADER:version:reserved:reserved:fileSystem:diskName:volumeId:serverList:localDiskName:
mmlsnsd:nsd:0:1:::fs1:nsd1:0A0B0C01:node1,node2:/dev/dm-1:
mmlsnsd:nsd:0:1:::fs1:nsd2:0A0B0C02:node2:/dev/dm-2:
"""

MMLSDISK = """\
mmlsdisk::HEADER:version:reserved:reserved:nsdName:driverType:sectorSize:failureGroup:metadata:data:status:availability:diskID:storagePool:diskSizeKB:
mmlsdisk::0:1:::nsd1:nsd:512:1:Yes:Yes:ready:up:1:data:1048576:
mmlsdisk::0:1:::nsd2:nsd:512:2:Yes:Yes:ready:up:2:data:1048576:
"""

MMDF = """\
mmdf:poolTotal:HEADER:version:reserved:reserved:poolName:poolSize:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:maxDiskSize:
mmdf:poolTotal:0:1:::data:2097152:1048576:50:0:0:2097152:
"""

MMDF_DETAIL = MMDF + """\
mmdf:nsd:HEADER:version:reserved:reserved:nsdName:storagePool:diskSize:failureGroup:metadata:data:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:diskAvailableForAlloc:
mmdf:nsd:0:1:::nsd1:data:1048576:1:Yes:Yes:524288:50:64:0:Yes:
mmdf:fsTotal:HEADER:version:reserved:reserved:fsSize:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:
mmdf:fsTotal:0:1:::2097152:1048576:50:0:0:
"""

MMLSFILESET = """\
mmlsfileset::HEADER:version:reserved:reserved:filesystemName:filesetName:id:status:path:maxInodes:allocInodes:
mmlsfileset::0:1:::fs1:root:0:Linked:%2Fgpfs%2Ffs1:100000:65792:
"""

MMLSMGR = """\
mmlsmgr:filesystemManager:HEADER:version:reserved:reserved:filesystem:manager:managerIP:
mmlsmgr:filesystemManager:0:1:::fs1:node2:10.0.0.2:
mmlsmgr:clusterManager:HEADER:version:reserved:reserved:manager:managerIP:
mmlsmgr:clusterManager:0:1:::node1:10.0.0.1:
"""

BROKEN_DAEMON = "mmlsnsd:unexpected: output from a broken daemon\n"

SAMPLE_HEADER = "gpfsio:nsd:HEADER:version:reserved:reserved:nsdName:readBytes:writeBytes:timestamp:"


def samples(ts, read, write):
    return f"{SAMPLE_HEADER}\ngpfsio:nsd:0:1:::nsd1:{read}:{write}:{ts}:\n"


def stat_line(read_sectors, write_sectors):
    return f"    100        0 {read_sectors}      50       20        0 {write_sectors}      300        0      120      350\n"


class FakeRunner:
    """Answers mm* commands from canned output."""

    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    def __call__(self, argv, timeout):
        key = ' '.join([os.path.basename(argv[0]), *argv[1:]])
        self.calls.append(key)
        if key not in self.outputs:
            raise CollectionFailure("failed (rc=1): unexpected", os.path.basename(argv[0]))
        return self.outputs[key]


class TestBlockStats(unittest.TestCase):
    """Test cases for sysfs block counters."""

    def test_parse_stat(self):
        stat = parse_stat(stat_line(2000, 4000))
        self.assertEqual(stat, BlockStat(read_sectors=2000, write_sectors=4000))
        self.assertEqual(stat.read_bytes, 2000 * 512)
        self.assertEqual(stat.write_bytes, 4000 * 512)

    def test_parse_stat_short(self):
        with self.assertRaises(ValueError):
            parse_stat("1 2 3")

    def test_sample_nsds_skips_missing_devices(self):
        with TemporaryDirectory() as root:
            os.makedirs(os.path.join(root, 'dm-1'))
            with open(os.path.join(root, 'dm-1', 'stat'), 'w', encoding='utf-8') as f:
                f.write(stat_line(10, 20))
            nsds = [
                Nsd('nsd1', ('node1',), 'nsd1', device='/dev/dm-1'),
                Nsd('nsd2', ('node1',), 'nsd2', device='/dev/dm-2'),
                Nsd('nsd3', ('node1',), 'nsd3'),
            ]
            result = sample_nsds(nsds, root=root, timestamp=5.0)
        self.assertEqual([(s.nsd, s.read_bytes, s.write_bytes, s.timestamp) for s in result],
                         [('nsd1', 5120, 10240, 5.0)])


class TestCollectionBuilder(unittest.TestCase):
    """Test cases for combining command outputs."""

    def test_empty_output_fails(self):
        with self.assertRaises(CollectionFailure) as ctx:
            CollectionBuilder().add_output("  \n", 'mmlsnsd')
        self.assertEqual(ctx.exception.command, 'mmlsnsd')

    def test_unusable_output_fails(self):
        broken = MMLSNSD.replace(':fs1:nsd1:0A0B0C01:', ':fs1:').replace(':fs1:nsd2:0A0B0C02:', ':fs1:')
        with self.assertRaises(CollectionFailure):
            CollectionBuilder().add_output(broken, 'mmlsnsd')

    def test_unknown_sections_only_fail(self):
        with self.assertRaises(CollectionFailure) as ctx:
            CollectionBuilder().add_output(BROKEN_DAEMON, 'mmlsnsd')
        self.assertIn('unknown sections', str(ctx.exception))

    def test_output_of_another_command_fails(self):
        with self.assertRaises(CollectionFailure) as ctx:
            CollectionBuilder().add_output(MMDF, 'mmlsdisk', filesystem='fs1')
        self.assertIn('no disk rows', str(ctx.exception))

    def test_quota_report_may_be_empty(self):
        header = "mmrepquota::HEADER:version:reserved:reserved:filesystemName:quotaType:id:name:\n"
        self.assertEqual(CollectionBuilder().add_output(header, 'mmrepquota', filesystem='fs1'), 0)

    def test_capacities_filesets_and_managers_kept(self):
        builder = CollectionBuilder()
        builder.add_output(MMDF_DETAIL, 'mmdf', filesystem='fs1')
        builder.add_output(MMLSFILESET, 'mmlsfileset', filesystem='fs1')
        builder.add_output(MMLSMGR, 'mmlsmgr')
        collection = builder.build(collected_at=1.0)
        self.assertEqual([n.name for n in collection.nsd_capacities], ['nsd1'])
        self.assertEqual(collection.fs_capacities[0].size_bytes, 2097152 * 1024)
        self.assertEqual(collection.filesets[0].name, 'root')
        self.assertEqual(builder.cluster_managers[0].name, 'node1')
        self.assertEqual(builder.fs_managers[0].filesystem, 'fs1')

    def test_partial_failure_keeps_good_rows(self):
        text = MMLSDISK.replace(':nsd2:nsd:512:2:Yes:', ':nsd2:nsd:512:2:perhaps:')
        builder = CollectionBuilder()
        self.assertEqual(builder.add_output(text, 'mmlsdisk', filesystem='fs1'), 1)
        collection = builder.build(collected_at=1.0)
        self.assertEqual(len(collection.topology.disks), 1)
        self.assertEqual(len(collection.row_failures), 1)
        self.assertEqual(collection.metadata['summary']['failures'], {'disk': 1})

    def test_filesystems_from_mmlsfs(self):
        builder = CollectionBuilder()
        builder.add_output(MMLSFS, 'mmlsfs')
        self.assertEqual(builder.filesystems, ['fs1'])

    def test_local_nsds(self):
        builder = CollectionBuilder()
        builder.add_output(MMLSNSD, 'mmlsnsd')
        self.assertEqual([n.name for n in local_nsds(builder.nsds, 'node1')], ['nsd1'])
        self.assertEqual([n.name for n in local_nsds(builder.nsds, 'node2')], ['nsd1', 'nsd2'])


class TestCommandDataSource(unittest.TestCase):
    """Test cases for the command data source with a fake runner."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.sysfs = os.path.join(self.temp_dir.name, 'block')
        os.makedirs(os.path.join(self.sysfs, 'dm-1'))
        with open(os.path.join(self.sysfs, 'dm-1', 'stat'), 'w', encoding='utf-8') as f:
            f.write(stat_line(2000, 4000))

        self.runner = FakeRunner({
            'mmlsfs all -Y -B': MMLSFS,
            'mmgetstate -Y': MMGETSTATE,
            'mmlsnsd -X -Y': MMLSNSD,
            'mmlsdisk fs1 -Y': MMLSDISK,
            'mmdf fs1 -Y': MMDF,
        })
        self.config = {'bin_dir': os.path.join(self.temp_dir.name, 'bin'), 'sysfs_root': self.sysfs}

    def tearDown(self):
        self.temp_dir.cleanup()

    def write_stat(self, device, read_sectors, write_sectors):
        os.makedirs(os.path.join(self.sysfs, device), exist_ok=True)
        with open(os.path.join(self.sysfs, device, 'stat'), 'w', encoding='utf-8') as f:
            f.write(stat_line(read_sectors, write_sectors))

    def test_collect(self):
        source = CommandDataSource(self.config, runner=self.runner)
        self.assertTrue(source.initialize())
        collection = source.collect()

        self.assertEqual(collection.filesystems, ['fs1'])
        self.assertEqual([n.name for n in collection.topology.nsds], ['nsd1'])
        self.assertEqual(len(collection.topology.disks), 2)
        self.assertEqual(collection.topology.pools[0].filesystem, 'fs1')
        self.assertEqual(collection.samples[0].read_bytes, 2000 * 512)
        self.assertEqual(collection.samples[0].timestamp, collection.collected_at)
        self.assertNotIn('mmrepquota -Y fs1', self.runner.calls)
        self.assertNotIn('mmlsfileset fs1 -Y', self.runner.calls)

        # nsd2 is served by node2 only, but it is still one of the pool's disks
        result = NsdPoolAggregator().refresh(collection.topology, collection.samples)
        self.assertEqual(result.pools[0].disk_count, 2)

    def test_all_nodes_samples_local_devices_only(self):
        self.write_stat('dm-2', 10, 20)
        source = CommandDataSource(dict(self.config, local_only=False, include_capacity=False), runner=self.runner)
        collection = source.collect()
        self.assertEqual(len(collection.topology.nsds), 2)
        self.assertEqual([s.nsd for s in collection.samples], ['nsd1'])
        self.assertIn('mmgetstate -Y', self.runner.calls)
        self.assertNotIn('mmdf fs1 -Y', self.runner.calls)

    def test_local_node_is_cached(self):
        source = CommandDataSource(dict(self.config, topology_interval=0), runner=self.runner)
        source.collect()
        source.collect()
        self.assertEqual(self.runner.calls.count('mmlsnsd -X -Y'), 2)
        self.assertEqual(self.runner.calls.count('mmgetstate -Y'), 1)

    def test_topology_reused_within_interval(self):
        source = CommandDataSource(dict(self.config, topology_interval=60), runner=self.runner)
        now = [1000.0]
        source.clock = lambda: now[0]

        first = source.collect()
        self.write_stat('dm-1', 3000, 4000)
        now[0] += 59
        second = source.collect()
        self.assertEqual(self.runner.calls.count('mmlsnsd -X -Y'), 1)
        self.assertEqual(second.topology, first.topology)
        self.assertEqual(second.samples[0].read_bytes, 3000 * 512)

        now[0] += 1
        source.collect()
        self.assertEqual(self.runner.calls.count('mmlsnsd -X -Y'), 2)
        self.assertEqual(self.runner.calls.count('mmlsdisk fs1 -Y'), 2)

    def test_failed_topology_read_is_retried(self):
        source = CommandDataSource(dict(self.config, topology_interval=60), runner=self.runner)
        now = [1000.0]
        source.clock = lambda: now[0]
        source.collect()
        now[0] += 60
        self.runner.outputs['mmlsdisk fs1 -Y'] = MMDF
        with self.assertRaises(CollectionFailure):
            source.collect()
        self.runner.outputs['mmlsdisk fs1 -Y'] = MMLSDISK
        self.assertEqual(len(source.collect().topology.disks), 2)

    def test_filesets(self):
        self.runner.outputs['mmlsfileset fs1 -Y'] = MMLSFILESET
        self.runner.outputs['mmdf fs1 -Y'] = MMDF_DETAIL
        source = CommandDataSource(dict(self.config, include_filesets=True), runner=self.runner)
        collection = source.collect()
        self.assertEqual([(f.filesystem, f.name, f.alloc_inodes) for f in collection.filesets], [('fs1', 'root', 65792)])
        self.assertEqual(collection.nsd_capacities[0].free_fragments_bytes, 64 * 1024)
        self.assertEqual(collection.fs_capacities[0].filesystem, 'fs1')

    def test_filesystem_pools_runs_only_mmdf(self):
        source = CommandDataSource(self.config, runner=self.runner)
        pools = source.filesystem_pools('fs1')
        self.assertEqual([(p.filesystem, p.name, p.used_percent) for p in pools], [('fs1', 'data', 50)])
        self.assertEqual(self.runner.calls, ['mmdf fs1 -Y'])

    def test_managers(self):
        self.runner.outputs['mmlsmgr -Y'] = MMLSMGR
        managers = CommandDataSource(self.config, runner=self.runner).managers()
        self.assertEqual(managers.cluster.name, 'node1')
        self.assertEqual([(m.filesystem, m.name) for m in managers.filesystems], [('fs1', 'node2')])

    def test_device_cache(self):
        cache = os.path.join(self.temp_dir.name, 'run', 'local-nsd-devices')
        source = CommandDataSource(dict(self.config, device_cache=cache, topology_interval=0), runner=self.runner)
        collection = source.collect()
        with open(cache, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "nsd1:/dev/dm-1\n")
        self.assertEqual([n.name for n in collection.topology.nsds], ['nsd1'])
        self.assertEqual([s.nsd for s in collection.samples], ['nsd1'])

        # later topology reads take the devices from the file; mmlsdisk places them
        collection = source.collect()
        self.assertEqual(self.runner.calls.count('mmlsnsd -X -Y'), 1)
        result = NsdPoolAggregator().refresh(collection.topology, collection.samples)
        self.assertEqual(result.group('fs1', 'data').members, frozenset({'nsd1'}))

    def test_forced_device_cache_rebuilds_once(self):
        cache = os.path.join(self.temp_dir.name, 'local-nsd-devices')
        with open(cache, 'w', encoding='utf-8') as f:
            f.write("nsd1:/dev/dm-7\n")
        config = dict(self.config, device_cache=cache, force_device_cache=True, topology_interval=0)
        source = CommandDataSource(config, runner=self.runner)
        source.collect()
        source.collect()
        self.assertEqual(self.runner.calls.count('mmlsnsd -X -Y'), 1)
        with open(cache, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "nsd1:/dev/dm-1\n")

    def test_broken_output_keeps_last_snapshot(self):
        source = CommandDataSource(dict(self.config, topology_interval=0), runner=self.runner)
        cache = AggregationCache()
        loop = RefreshLoop(source, cache)
        self.assertEqual(len(loop.refresh_now().groups), 1)

        self.runner.outputs['mmlsnsd -X -Y'] = BROKEN_DAEMON
        snapshot = loop.refresh_now()
        self.assertEqual(len(snapshot.groups), 1)
        self.assertEqual(snapshot.total_failures, 1)
        self.assertEqual(snapshot.generation, 1)
        self.assertIn('mmlsnsd', snapshot.last_error)

    def test_configured_filesystems(self):
        source = CommandDataSource(dict(self.config, filesystems=['fs1']), runner=self.runner)
        self.assertEqual(source.list_filesystems(), ['fs1'])
        self.assertNotIn('mmlsfs all -Y -B', self.runner.calls)

    def test_command_failure_propagates(self):
        del self.runner.outputs['mmlsdisk fs1 -Y']
        source = CommandDataSource(self.config, runner=self.runner)
        with self.assertRaises(CollectionFailure):
            source.collect()

    def test_initialize_fails_without_commands(self):
        source = CommandDataSource(self.config, runner=FakeRunner({}))
        self.assertFalse(source.initialize())

    def test_run_command_missing_binary(self):
        with self.assertRaises(CollectionFailure) as ctx:
            run_command([os.path.join(self.temp_dir.name, 'no-such-mmlsnsd')], timeout=5)
        self.assertEqual(ctx.exception.command, 'no-such-mmlsnsd')


class StaticSource:
    """Stands in for a data source when only the device cache is exercised."""

    def __init__(self, nsds):
        self.nsds = nsds
        self.rebuilds = 0

    def local_node_name(self):
        return 'node1'

    def served_nsds(self):
        self.rebuilds += 1
        return list(self.nsds)


class TestDeviceCache(unittest.TestCase):
    """Test cases for the local NSD device cache file."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.path = os.path.join(self.temp_dir.name, 'run', 'local-nsd-devices')
        self.source = StaticSource([
            Nsd('nsd2', ('node1',), 'nsd2', device='/dev/dm-2'),
            Nsd('nsd1', ('node1',), 'nsd1', device='/dev/dm-1'),
            Nsd('nsd3', ('node1',), 'nsd3'),
        ])

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_format(self):
        self.assertEqual(format_device_cache(self.source.nsds), "nsd1:/dev/dm-1\nnsd2:/dev/dm-2\n")

    def test_parse(self):
        nsds = parse_device_cache("nsd1:/dev/dm-1\n\nnsd2:/dev/mapper/mpath:a\n", 'node4')
        self.assertEqual([(n.name, n.device, n.servers) for n in nsds],
                         [('nsd1', '/dev/dm-1', ('node4',)), ('nsd2', '/dev/mapper/mpath:a', ('node4',))])
        with self.assertRaises(ValueError):
            parse_device_cache("nsd1\n", 'node4')

    def test_built_once_then_read(self):
        first = load_local_devices(self.path, self.source)
        second = load_local_devices(self.path, self.source)
        self.assertEqual(self.source.rebuilds, 1)
        self.assertEqual([n.name for n in first], ['nsd2', 'nsd1'])
        self.assertEqual([n.name for n in second], ['nsd1', 'nsd2'])

        load_local_devices(self.path, self.source, force=True)
        self.assertEqual(self.source.rebuilds, 2)

    def test_malformed_file_is_rebuilt(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write("half a line\n")
        nsds = load_local_devices(self.path, self.source)
        self.assertEqual(self.source.rebuilds, 1)
        self.assertEqual(len(nsds), 2)

    def test_unwritable_location(self):
        blocker = os.path.join(self.temp_dir.name, 'blocker')
        with open(blocker, 'w', encoding='utf-8') as f:
            f.write('x')
        path = os.path.join(blocker, 'local-nsd-devices')
        self.assertEqual(len(load_local_devices(path, self.source)), 2)
        with self.assertRaises(OSError):
            load_local_devices(path, self.source, strict=True)


class TestReplayDataSource(unittest.TestCase):
    """Test cases for replaying recorded outputs."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.write('mmlsnsd.txt', MMLSNSD)
        self.write('mmlsdisk.fs1.txt', MMLSDISK)
        self.write('mmdf.fs1.txt', MMDF)
        self.write('gpfsio.001.txt', samples(100.0, 0, 0))
        self.write('gpfsio.002.txt', samples(105.0, 600000000, 0))
        self.source = ReplayDataSource({'replay_dir': self.temp_dir.name})

    def tearDown(self):
        self.temp_dir.cleanup()

    def write(self, name, content):
        with open(os.path.join(self.temp_dir.name, name), 'w', encoding='utf-8') as f:
            f.write(content)

    def test_split_name(self):
        self.assertEqual(split_name('/x/mmdf.fs1.txt'), ('mmdf', 'fs1'))
        self.assertEqual(split_name('mmlsnsd.out'), ('mmlsnsd', None))

    def test_batches(self):
        self.assertTrue(self.source.initialize())
        self.assertEqual(self.source.list_filesystems(), ['fs1'])

        first = self.source.collect()
        self.assertEqual(first.collected_at, 100.0)
        self.assertEqual(len(first.topology.nsds), 2)
        self.assertFalse(self.source.exhausted())

        second = self.source.collect()
        self.assertEqual(second.samples[0].read_bytes, 600000000)
        self.assertTrue(self.source.exhausted())

        with self.assertRaises(CollectionFailure):
            self.source.collect()

    def test_single_recordings(self):
        self.write('mmgetstate.txt', MMGETSTATE)
        self.write('mmlsmgr.txt', MMLSMGR)
        self.assertEqual(self.source.local_node_name(), 'node1')
        self.assertEqual([n.name for n in self.source.served_nsds()], ['nsd1'])
        self.assertEqual([p.name for p in self.source.filesystem_pools('fs1')], ['data'])
        self.assertEqual(self.source.managers().cluster.name, 'node1')
        with self.assertRaises(CollectionFailure):
            self.source.filesystem_pools('fs2')

    def test_missing_directory(self):
        source = ReplayDataSource({'replay_dir': os.path.join(self.temp_dir.name, 'nope')})
        self.assertFalse(source.initialize())

    def test_empty_directory(self):
        with TemporaryDirectory() as empty:
            self.assertFalse(ReplayDataSource({'replay_dir': empty}).initialize())


if __name__ == '__main__':
    unittest.main()
