"""
Tests for the command line interface.
"""
import io
import json
import os
import unittest
from tempfile import TemporaryDirectory

from .core.logging_config import LoggingConfigurator
from .main import run_cli

MMLSNSD = """\
mmlsnsd:nsd:HEADER:version:reserved:reserved:fileSystem:diskName:volumeId:serverList:localDiskName:
mmlsnsd:nsd:0:1:::fs1:nsd1:0A0B0C01:node1:/dev/dm-1:
mmlsnsd:nsd:0:1:::fs1:nsd2:0A0B0C02:node1:/dev/dm-2:
mmlsnsd:nsd:0:1:::(free disk):nsd3:0A0B0C03:node1:/dev/sdz:
"""

MMLSDISK = """\
mmlsdisk::HEADER:version:reserved:reserved:nsdName:driverType:sectorSize:failureGroup:metadata:data:status:availability:diskID:storagePool:diskSizeKB:
mmlsdisk::0:1:::nsd1:nsd:512:1:No:Yes:ready:up:1:data:1048576:
mmlsdisk::0:1:::nsd2:nsd:512:2:No:Yes:ready:up:2:data:1048576:
"""

MMDF = """\
mmdf:poolTotal:HEADER:version:reserved:reserved:poolName:poolSize:freeBlocks:freeBlocksPct:freeFragments:freeFragmentsPct:maxDiskSize:
mmdf:poolTotal:0:1:::data:2097152:1048576:50:0:0:2097152:
"""

MMGETSTATE = """\
mmgetstate::HEADER:version:reserved:reserved:nodeName:nodeNumber:state:quorum:nodesUp:totalNodes:remarks:cnfsState:
mmgetstate::0:1:::node1:1:active:1:1:1:quorum node:disabled:
"""

MMLSMGR = """\
mmlsmgr:filesystemManager:HEADER:version:reserved:reserved:filesystem:manager:managerIP:
mmlsmgr:filesystemManager:0:1:::fs1:node2:10.0.0.2:
mmlsmgr:clusterManager:HEADER:version:reserved:reserved:manager:managerIP:
mmlsmgr:clusterManager:0:1:::node1:10.0.0.1:
"""

SAMPLE_HEADER = "gpfsio:nsd:HEADER:version:reserved:reserved:nsdName:readBytes:writeBytes:timestamp:"


class TestCli(unittest.TestCase):
    """Test cases for the gpfs-collector command."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()
        self.replay_dir = os.path.join(self.temp_dir.name, 'replay')
        os.makedirs(self.replay_dir)
        self.write('mmlsnsd.txt', MMLSNSD)
        self.write('mmlsdisk.fs1.txt', MMLSDISK)
        self.write('mmdf.fs1.txt', MMDF)

    def tearDown(self):
        LoggingConfigurator.setup_logging('WARNING')
        self.temp_dir.cleanup()

    def write(self, name, content, directory=None):
        path = os.path.join(directory or self.replay_dir, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        code = run_cli(list(argv), out=out, err=err)
        return code, out.getvalue(), err.getvalue()

    def test_parse(self):
        code, out, err = self.cli('parse', os.path.join(self.replay_dir, 'mmlsdisk.fs1.txt'), '--filesystem', 'fs1')
        self.assertEqual(code, 0)
        self.assertEqual(len(out.splitlines()), 2)
        self.assertTrue(out.startswith("disk name=nsd1 nsd_name=nsd1"))
        self.assertEqual(err, '')

    def test_parse_json(self):
        code, out, _ = self.cli('parse', os.path.join(self.replay_dir, 'mmdf.fs1.txt'),
                                '--filesystem', 'fs1', '--format', 'json')
        self.assertEqual(code, 0)
        pool = json.loads(out.splitlines()[0])
        self.assertEqual(pool['type'], 'pool')
        self.assertEqual(pool['line'], 2)
        self.assertEqual(pool['total_bytes'], 2097152 * 1024)

    def test_parse_exit_code_follows_requested_type(self):
        bad_disk = MMLSDISK.replace(':nsd2:nsd:512:2:No:', ':nsd2:nsd:512:2:sometimes:')
        path = self.write('mixed.txt', MMDF + bad_disk, directory=self.temp_dir.name)

        code, out, err = self.cli('parse', path)
        self.assertEqual(code, 1)
        self.assertIn("line 5", err)

        code, out, _ = self.cli('parse', path, '--type', 'pool')
        self.assertEqual(code, 0)
        self.assertEqual(len(out.splitlines()), 1)

        code, _, _ = self.cli('parse', path, '--type', 'pool', '--strict')
        self.assertEqual(code, 1)

        code, _, _ = self.cli('parse', path, '--type', 'disk')
        self.assertEqual(code, 1)

    def test_parse_missing_file(self):
        code, _, err = self.cli('parse', os.path.join(self.temp_dir.name, 'missing.txt'))
        self.assertEqual(code, 1)
        self.assertIn("error", err)

    def test_nmon_groups(self):
        code, out, _ = self.cli('nmon-groups', '--replay-dir', self.replay_dir)
        self.assertEqual(code, 0)
        self.assertEqual(out, "fs1-data dm-1 dm-2\n")

    def test_nmon_groups_to_file(self):
        target = os.path.join(self.temp_dir.name, 'nmon-devices')
        code, out, _ = self.cli('nmon-groups', '--replay-dir', self.replay_dir, '--write', target)
        self.assertEqual(code, 0)
        self.assertEqual(out, '')
        with open(target, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "fs1-data dm-1 dm-2\n")

    def test_pool_percent(self):
        code, out, _ = self.cli('pool-percent', '--replay-dir', self.replay_dir, 'fs1', 'data')
        self.assertEqual((code, out), (0, "50\n"))

        code, _, err = self.cli('pool-percent', '--replay-dir', self.replay_dir, 'fs1', 'gold')
        self.assertEqual(code, 1)
        self.assertIn("gold", err)

    def test_pool_percent_reads_only_mmdf(self):
        only_mmdf = os.path.join(self.temp_dir.name, 'mmdf-only')
        os.makedirs(only_mmdf)
        self.write('mmdf.fs1.txt', MMDF, directory=only_mmdf)
        code, out, _ = self.cli('pool-percent', '--replay-dir', only_mmdf, 'fs1', 'data')
        self.assertEqual((code, out), (0, "50\n"))

    def test_list_filesystems(self):
        code, out, _ = self.cli('list', 'filesystems', '--replay-dir', self.replay_dir)
        self.assertEqual((code, out), (0, "fs1\n"))
        code, out, _ = self.cli('list', 'fs', '--replay-dir', self.replay_dir)
        self.assertEqual((code, out), (0, "fs1\n"))

    def test_list_manager(self):
        self.write('mmlsmgr.txt', MMLSMGR)
        code, out, _ = self.cli('list', 'manager', 'cluster', '--replay-dir', self.replay_dir)
        self.assertEqual((code, out), (0, "node1\n"))
        code, out, _ = self.cli('list', 'manager', 'filesystems', '--replay-dir', self.replay_dir)
        self.assertEqual((code, out), (0, "fs1 node2\n"))

    def test_list_manager_without_recording(self):
        code, _, err = self.cli('list', 'manager', 'cluster', '--replay-dir', self.replay_dir)
        self.assertEqual(code, 1)
        self.assertIn("mmlsmgr", err)

    def test_cache_nsds(self):
        self.write('mmgetstate.txt', MMGETSTATE)
        runtime_dir = os.path.join(self.temp_dir.name, 'run')
        cache_file = os.path.join(runtime_dir, 'local-nsd-devices')

        code, out, _ = self.cli('cache', 'nsds', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir)
        self.assertEqual(code, 0)
        self.assertEqual(out, "nsd1:/dev/dm-1\nnsd2:/dev/dm-2\nnsd3:/dev/sdz\n")
        with open(cache_file, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), out)

        # an existing cache is used as is until forced
        self.write('local-nsd-devices', "nsd1:/dev/dm-9\n", directory=runtime_dir)
        code, out, _ = self.cli('cache', 'nsds', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir)
        self.assertEqual((code, out), (0, "nsd1:/dev/dm-9\n"))
        code, out, _ = self.cli('cache', 'nsds', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir,
                                '--force')
        self.assertEqual(code, 0)
        self.assertTrue(out.startswith("nsd1:/dev/dm-1\n"))

    def test_cache_nmon(self):
        runtime_dir = os.path.join(self.temp_dir.name, 'run')
        code, out, _ = self.cli('cache', 'nmon', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir)
        self.assertEqual((code, out), (0, "fs1-data dm-1 dm-2\n"))

        self.write('nmon-devices', "fs1-data sdq\n", directory=runtime_dir)
        code, out, _ = self.cli('cache', 'nmon', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir)
        self.assertEqual(out, "fs1-data sdq\n")
        code, out, _ = self.cli('cache', 'nmon', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir,
                                '--force')
        self.assertEqual(out, "fs1-data dm-1 dm-2\n")

    def test_run_replay_to_nmon(self):
        self.write('gpfsio.001.txt', f"{SAMPLE_HEADER}\ngpfsio:nsd:0:1:::nsd1:0:0:100:\n")
        self.write('gpfsio.002.txt', f"{SAMPLE_HEADER}\ngpfsio:nsd:0:1:::nsd1:1000:500:102:\n")
        runtime_dir = os.path.join(self.temp_dir.name, 'run')

        code, _, _ = self.cli('run', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir,
                              '--interval', '0.01', '--log-level', 'ERROR')
        self.assertEqual(code, 0)
        with open(os.path.join(runtime_dir, 'nmon-groups'), 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "fs1-data 500.0 250.0\n")

    def test_run_refresh_failures_do_not_fail_process(self):
        self.write('gpfsio.001.txt', "gpfsio:nsd:0:1:::nsd1:0:0:100:\n")
        runtime_dir = os.path.join(self.temp_dir.name, 'run')
        code, _, _ = self.cli('run', '--replay-dir', self.replay_dir, '--runtime-dir', runtime_dir,
                              '--interval', '0.01', '--log-level', 'ERROR')
        self.assertEqual(code, 0)

    def test_run_setup_failures(self):
        code, _, _ = self.cli('run', '--replay-dir', os.path.join(self.temp_dir.name, 'nope'),
                              '--log-level', 'ERROR')
        self.assertEqual(code, 1)

        blocker = self.write('blocker', 'x', directory=self.temp_dir.name)
        code, _, err = self.cli('run', '--replay-dir', self.replay_dir,
                                '--runtime-dir', os.path.join(blocker, 'run'), '--log-level', 'ERROR')
        self.assertEqual(code, 1)
        self.assertIn("error", err)

        code, _, _ = self.cli('run', '--replay-dir', self.replay_dir, '--stale-after', '0', '--log-level', 'ERROR')
        self.assertEqual(code, 1)


if __name__ == '__main__':
    unittest.main()
