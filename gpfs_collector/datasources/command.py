"""Command DataSource implementation.

Runs the mm* administrative commands with -Y, decodes their output and
samples block device counters for the NSDs this node serves.
"""

import logging
import os
import subprocess
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..schema.models import Nsd, Pool
from .base import (
    Collection, CollectionBuilder, CollectionFailure, DataSource, Managers, local_nsds, managers_from,
)
from .block_stats import SYSFS_BLOCK, sample_nsds
from .device_cache import load_local_devices

DEFAULT_BIN_DIR = '/usr/lpp/mmfs/bin'
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_TOPOLOGY_INTERVAL = 60.0

Runner = Callable[[Sequence[str], float], str]


def run_command(argv: Sequence[str], timeout: float) -> str:
    """
    Run one command and return its stdout.

    Raises:
        CollectionFailure: if the command is missing, times out or exits non-zero
    """
    name = os.path.basename(argv[0])
    try:
        cp = subprocess.run(list(argv), capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        raise CollectionFailure("command not found", name)
    except subprocess.TimeoutExpired:
        raise CollectionFailure(f"timed out after {timeout}s", name)

    if cp.returncode != 0:
        raise CollectionFailure(f"failed (rc={cp.returncode}): {cp.stderr.strip() or cp.stdout.strip()}", name)
    return cp.stdout


class CommandDataSource(DataSource):
    """DataSource that talks to the cluster through its admin commands.

    Topology (NSDs, disks, pools, capacities, quotas, filesets) is re-read
    every ``topology_interval`` seconds; block device counters are sampled
    on every collect, and only for NSDs the local node serves.

    Config keys:
        bin_dir: directory of the mm* commands (default /usr/lpp/mmfs/bin)
        command_timeout: seconds per command
        filesystems: restrict to these file systems (default: all)
        local_only: only NSDs served by this node, as named by mmgetstate
        include_capacity: also run mmdf per file system
        include_quotas: also run mmrepquota per file system
        include_filesets: also run mmlsfileset per file system
        topology_interval: seconds between topology reads, 0 for every collect
        device_cache: local NSD device cache file, empty to always run mmlsnsd -X
        force_device_cache: rebuild the device cache on the next topology read
        sysfs_root: block device statistics root
    """

    def __init__(self, config: Dict[str, Any], runner: Optional[Runner] = None):
        super().__init__(config)
        self.logger = logging.getLogger(__name__)
        self.bin_dir = config.get('bin_dir') or DEFAULT_BIN_DIR
        self.timeout = float(config.get('command_timeout') or DEFAULT_COMMAND_TIMEOUT)
        self.filesystems: List[str] = list(config.get('filesystems') or [])
        self.local_only = config.get('local_only', True)
        self.include_capacity = config.get('include_capacity', True)
        self.include_quotas = config.get('include_quotas', False)
        self.include_filesets = config.get('include_filesets', False)
        interval = config.get('topology_interval')
        self.topology_interval = float(DEFAULT_TOPOLOGY_INTERVAL if interval is None else interval)
        self.device_cache: Optional[str] = config.get('device_cache') or None
        self.force_device_cache = bool(config.get('force_device_cache', False))
        self.sysfs_root = config.get('sysfs_root') or SYSFS_BLOCK
        self.runner: Runner = runner or run_command
        self.clock: Callable[[], float] = time.monotonic
        self._local_node: Optional[str] = None
        self._topology: Optional[CollectionBuilder] = None
        self._sampled: Tuple[Nsd, ...] = ()
        self._topology_read_at = 0.0

    def _command(self, name: str, *args: str) -> List[str]:
        path = os.path.join(self.bin_dir, name)
        # PATH lookup when the commands are not under bin_dir
        return [path if os.path.exists(path) else name, *args]

    def run(self, name: str, *args: str) -> str:
        argv = self._command(name, *args)
        self.logger.debug(f"Running {' '.join(argv)}")
        return self.runner(argv, self.timeout)

    def initialize(self) -> bool:
        """Check that the commands can be run at all."""
        try:
            self.list_filesystems()
        except CollectionFailure as e:
            self.logger.error(f"Command data source unavailable: {e}")
            return False
        return True

    def list_filesystems(self) -> List[str]:
        if self.filesystems:
            return list(self.filesystems)
        builder = CollectionBuilder()
        builder.add_output(self.run('mmlsfs', 'all', '-Y', '-B'), 'mmlsfs')
        return builder.filesystems

    def local_node_name(self) -> str:
        """First node reported by mmgetstate -Y, which is the local one. Cached."""
        if self._local_node is None:
            builder = CollectionBuilder()
            builder.add_output(self.run('mmgetstate', '-Y'), 'mmgetstate')
            self._local_node = builder.node_states[0].node
            self.logger.info(f"Local node is {self._local_node}")
        return self._local_node

    def all_nsds(self) -> List[Nsd]:
        builder = CollectionBuilder()
        builder.add_output(self.run('mmlsnsd', '-X', '-Y'), 'mmlsnsd')
        return builder.nsds

    def served_nsds(self) -> List[Nsd]:
        return list(local_nsds(self.all_nsds(), self.local_node_name()))

    def filesystem_pools(self, filesystem: str) -> List[Pool]:
        """Pools of one file system from a single ``mmdf <fs> -Y``."""
        builder = CollectionBuilder()
        builder.add_output(self.run('mmdf', filesystem, '-Y'), 'mmdf', filesystem=filesystem)
        return builder.pools

    def managers(self) -> Managers:
        builder = CollectionBuilder()
        builder.add_output(self.run('mmlsmgr', '-Y'), 'mmlsmgr')
        return managers_from(builder)

    def _cached_devices(self) -> Tuple[Nsd, ...]:
        cached = load_local_devices(self.device_cache, self, force=self.force_device_cache)
        self.force_device_cache = False
        return tuple(cached)

    def _read_topology(self) -> CollectionBuilder:
        builder = CollectionBuilder()
        filesystems = self.list_filesystems()
        builder.filesystems = list(filesystems)

        if self.local_only and self.device_cache:
            # the cached local NSDs are the whole topology; mmlsdisk places them
            sampled = self._cached_devices()
            builder.nsds = list(sampled)
        else:
            builder.add_output(self.run('mmlsnsd', '-X', '-Y'), 'mmlsnsd')
            if self.device_cache:
                sampled = self._cached_devices()
            else:
                sampled = local_nsds(builder.nsds, self.local_node_name())
            if self.local_only:
                builder.nsds = list(local_nsds(builder.nsds, self.local_node_name()))

        for fs in filesystems:
            builder.add_output(self.run('mmlsdisk', fs, '-Y'), 'mmlsdisk', filesystem=fs)
            if self.include_capacity:
                builder.add_output(self.run('mmdf', fs, '-Y'), 'mmdf', filesystem=fs)
            if self.include_quotas:
                builder.add_output(self.run('mmrepquota', '-Y', fs), 'mmrepquota', filesystem=fs)
            if self.include_filesets:
                builder.add_output(self.run('mmlsfileset', fs, '-Y'), 'mmlsfileset', filesystem=fs)

        self.logger.debug(f"Read topology: {len(builder.nsds)} NSDs, {len(builder.disks)} disks, "
                          f"{len(sampled)} local devices in {len(filesystems)} file systems")
        self._sampled = sampled
        return builder

    def topology_due(self) -> bool:
        if self._topology is None or self.topology_interval <= 0:
            return True
        return self.clock() - self._topology_read_at >= self.topology_interval

    def collect(self) -> Collection:
        if self.topology_due():
            self._topology = self._read_topology()
            self._topology_read_at = self.clock()

        now = time.time()
        samples = sample_nsds(self._sampled, root=self.sysfs_root, timestamp=now)
        self.logger.debug(f"Sampled {len(samples)} of {len(self._sampled)} local devices")
        return self._topology.build(collected_at=now, samples=samples)

    def cleanup(self) -> None:
        self._topology = None
