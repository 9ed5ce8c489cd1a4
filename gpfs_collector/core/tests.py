"""
Tests for the refresh loop and the configuration layer.
"""
import argparse
import json
import logging
import os
import threading
import unittest
from tempfile import TemporaryDirectory

from .collector import RefreshLoop
from .config import CollectorConfig
from .logging_config import LoggingConfigurator
from .writer_config import WriterConfig
from ..aggregation.pool_aggregator import Topology
from ..cache.aggregate_cache import AggregationCache
from ..config import Settings
from ..datasources.base import Collection, CollectionFailure, DataSource
from ..schema.models import IoSample, Nsd
from ..writer.base import Writer

TOPOLOGY = Topology(nsds=(Nsd('nsd1', ('node1',), 'nsd1', pool='data', filesystem='fs1', device='/dev/dm-1'),))


def collection(ts, read):
    return Collection(topology=TOPOLOGY, samples=[IoSample('nsd1', read, 0, ts)], collected_at=ts)


class ScriptedSource(DataSource):
    """Returns the scripted collections in order; exceptions in the script are raised."""

    def __init__(self, script, finite=False):
        super().__init__({})
        self.script = list(script)
        self.finite = finite
        self.calls = 0

    def collect(self):
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step

    def list_filesystems(self):
        return ['fs1']

    def exhausted(self):
        return self.finite and self.calls >= len(self.script)


class RecordingWriter(Writer):
    def __init__(self, fail=False):
        self.snapshots = []
        self.fail = fail

    def write(self, snapshot, loop_iteration=1):
        self.snapshots.append(snapshot)
        if self.fail:
            raise RuntimeError("writer broke")
        return True


class TestRefreshLoop(unittest.TestCase):
    """Test cases for RefreshLoop."""

    def test_refresh_publishes_rates(self):
        cache = AggregationCache()
        loop = RefreshLoop(ScriptedSource([collection(10.0, 0), collection(12.0, 400)]), cache)
        loop.refresh_now()
        snapshot = loop.refresh_now()
        self.assertIs(cache.current(), snapshot)
        self.assertEqual(snapshot.groups[0].read_rate, 200.0)
        self.assertEqual(snapshot.refreshed_at, 12.0)

    def test_failure_keeps_last_good_snapshot(self):
        cache = AggregationCache(stale_after_failures=2)
        source = ScriptedSource([collection(10.0, 0), CollectionFailure("timed out", 'mmlsnsd'),
                                 ValueError("bad state")])
        loop = RefreshLoop(source, cache)
        good = loop.refresh_now()

        first = loop.refresh_now()
        self.assertEqual(first.groups, good.groups)
        self.assertFalse(first.stale)

        second = loop.refresh_now()
        self.assertTrue(second.stale)
        self.assertEqual(second.last_error, "bad state")
        self.assertEqual(second.generation, good.generation)

    def test_writer_errors_do_not_stop_refresh(self):
        writer = RecordingWriter(fail=True)
        loop = RefreshLoop(ScriptedSource([collection(1.0, 0)]), AggregationCache(), writer=writer)
        loop.refresh_now()
        loop.refresh_now()
        self.assertEqual(len(writer.snapshots), 2)

    def test_run_forever_stops_at_max_iterations(self):
        writer = RecordingWriter()
        loop = RefreshLoop(ScriptedSource([collection(1.0, 0)]), AggregationCache(), writer=writer,
                           interval=0.01, max_iterations=3)
        loop.run_forever()
        self.assertEqual(loop.iterations, 3)
        self.assertEqual(len(writer.snapshots), 3)

    def test_run_forever_stops_when_source_exhausted(self):
        source = ScriptedSource([collection(1.0, 0), collection(2.0, 10)], finite=True)
        loop = RefreshLoop(source, AggregationCache(), interval=0.01)
        loop.run_forever()
        self.assertEqual(source.calls, 2)

    def test_start_and_stop(self):
        cache = AggregationCache()
        refreshed = threading.Event()

        class SignallingWriter(Writer):
            def write(self, snapshot, loop_iteration=1):
                refreshed.set()
                return True

        loop = RefreshLoop(ScriptedSource([collection(1.0, 0)]), cache, writer=SignallingWriter(), interval=0.05)
        loop.start()
        self.assertTrue(refreshed.wait(5))
        self.assertTrue(loop.running)
        self.assertTrue(loop.stop(timeout=5))
        self.assertFalse(loop.running)
        self.assertFalse(cache.current().is_empty)

    def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            RefreshLoop(ScriptedSource([collection(1.0, 0)]), AggregationCache(), interval=0)


class TestCollectorConfig(unittest.TestCase):
    """Test cases for configuration classes."""

    def args(self, **kwargs):
        return argparse.Namespace(**kwargs)

    def test_defaults(self):
        config = CollectorConfig.from_args(self.args())
        self.assertEqual(config.source, 'command')
        self.assertEqual(config.interval, 1.0)
        self.assertEqual(config.stale_after_failures, 3)
        self.assertTrue(config.local_only)
        self.assertEqual(config.topology_interval, 60.0)
        self.assertEqual(config.device_cache, '/run/gpfs-collector/local-nsd-devices')
        self.assertFalse(config.force_device_cache)

    def test_device_cache_location(self):
        config = CollectorConfig.from_args(self.args(runtime_dir='/tmp/run', force=True))
        self.assertEqual(config.to_dict()['device_cache'], '/tmp/run/local-nsd-devices')
        self.assertTrue(config.to_dict()['force_device_cache'])
        self.assertIsNone(CollectorConfig.from_args(self.args(device_cache='')).device_cache)

    def test_replay_dir_selects_replay(self):
        config = CollectorConfig.from_args(self.args(replay_dir='/tmp/rec'))
        self.assertEqual(config.source, 'replay')
        self.assertEqual(config.to_dict()['replay_dir'], '/tmp/rec')

    def test_args_win_over_settings(self):
        settings = Settings(from_env=True, environ={'GPFS_COLLECTOR_INTERVAL': '5',
                                                    'GPFS_COLLECTOR_FILESYSTEMS': 'fs1, fs2'})
        config = CollectorConfig.from_args(self.args(interval=2.0), settings)
        self.assertEqual(config.interval, 2.0)
        self.assertEqual(config.filesystems, ['fs1', 'fs2'])

    def test_validation(self):
        with self.assertRaises(ValueError):
            CollectorConfig(interval=0)
        with self.assertRaises(ValueError):
            CollectorConfig(stale_after_failures=0)
        with self.assertRaises(ValueError):
            CollectorConfig(source='replay')
        with self.assertRaises(ValueError):
            CollectorConfig(topology_interval=-1)

    def test_writer_config(self):
        config = WriterConfig.from_args(self.args(output='both', prometheus_port=9400))
        self.assertTrue(config.nmon_enabled)
        self.assertTrue(config.prometheus_enabled)
        self.assertEqual(config.to_dict()['prometheus_port'], 9400)
        self.assertNotIn('prometheus_port', WriterConfig().to_dict())
        with self.assertRaises(ValueError):
            WriterConfig(output_format='influxdb')
        with self.assertRaises(ValueError):
            WriterConfig(output_format='prometheus', prometheus_port=70000)


class TestSettings(unittest.TestCase):
    """Test cases for settings files and environment variables."""

    def setUp(self):
        self.temp_dir = TemporaryDirectory()

    def tearDown(self):
        self.temp_dir.cleanup()

    def write(self, name, content):
        path = os.path.join(self.temp_dir.name, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def test_yaml(self):
        path = self.write('collector.yaml', "interval: 2.5\nruntime_dir: /run/x\nbogus: 1\n")
        settings = Settings(path, from_env=False)
        self.assertEqual(settings.get('interval'), 2.5)
        self.assertEqual(settings.get('runtime_dir'), '/run/x')
        self.assertIsNone(settings.get('bogus'))

    def test_json(self):
        path = self.write('collector.json', json.dumps({'output': 'prometheus', 'prometheus_port': 9500}))
        settings = Settings(path, from_env=False)
        self.assertEqual(WriterConfig.from_args(argparse.Namespace(), settings).prometheus_port, 9500)

    def test_env_overrides_file(self):
        path = self.write('collector.yml', "interval: 2.5\n")
        settings = Settings(path, environ={'GPFS_COLLECTOR_INTERVAL': '0.5'})
        self.assertEqual(settings.get('interval'), 0.5)

    def test_invalid_file(self):
        path = self.write('broken.yaml', "interval: [1, 2\n")
        with self.assertRaises(ValueError):
            Settings(path, from_env=False)
        with self.assertRaises(ValueError):
            Settings(self.write('list.yaml', "- 1\n- 2\n"), from_env=False)

    def test_invalid_env(self):
        with self.assertRaises(ValueError):
            Settings(environ={'GPFS_COLLECTOR_PROMETHEUS_PORT': 'ninety'})

    def test_missing_file_is_ignored(self):
        settings = Settings(os.path.join(self.temp_dir.name, 'none.yaml'), from_env=False)
        self.assertEqual(settings.values, {})


class TestLoggingConfigurator(unittest.TestCase):
    """Test cases for logging setup."""

    def tearDown(self):
        LoggingConfigurator.setup_logging('WARNING')

    def test_log_file(self):
        with TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'logs', 'collector.log')
            LoggingConfigurator.setup_logging('debug', path)
            logging.getLogger('gpfs_collector.test').debug("hello")
            for handler in logging.getLogger().handlers:
                handler.flush()
            with open(path, 'r', encoding='utf-8') as f:
                self.assertIn("hello", f.read())
            LoggingConfigurator.setup_logging('WARNING')

    def test_unknown_level(self):
        with self.assertRaises(ValueError):
            LoggingConfigurator.setup_logging('LOUD')


if __name__ == '__main__':
    unittest.main()
