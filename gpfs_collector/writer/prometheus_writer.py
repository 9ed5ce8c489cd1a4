"""
Prometheus exporter writer for the GPFS collector.
Publishes pool I/O rates, pool, NSD and file system capacity, fileset inode
counts and quota usage from each snapshot.
"""

import logging
import threading
from typing import Any, Dict, Optional, Set, Tuple

from prometheus_client import Gauge, CollectorRegistry, start_http_server, generate_latest

from ..aggregation.views import pool_capacity, pool_io_rates, quota_status
from ..cache.aggregate_cache import AggregateSnapshot
from .base import Writer

# Initialize logger
LOG = logging.getLogger(__name__)

POOL_LABELS = ['filesystem', 'pool']
NSD_LABELS = ['filesystem', 'pool', 'nsd', 'metadata', 'data']
FS_LABELS = ['filesystem']
FILESET_LABELS = ['filesystem', 'fileset']
QUOTA_LABELS = ['filesystem', 'kind', 'name', 'fileset']

Series = Dict[Tuple[str, ...], float]


def _flag(value: bool) -> str:
    return 'yes' if value else 'no'


class PrometheusWriter(Writer):
    """
    Prometheus writer with a fixed metric set in a private registry.

    Each write sets every current series first and then removes only the
    label sets that were exported last time but are gone now, so a scrape
    running during a write sees either the old or the new value of a series,
    never a missing one.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize Prometheus Writer.

        Args:
            config: Optional configuration dictionary; ``prometheus_port`` of
                None or 0 disables the HTTP server (``render()`` still works)
        """
        config = config or {}
        self.port = config.get('prometheus_port', 9303)
        self.export_when_stale = config.get('export_when_stale', True)

        # Create separate registry for this writer
        self.prometheus_registry = CollectorRegistry()
        registry = self.prometheus_registry

        self.pool_read_rate = Gauge('gpfs_pool_read_bytes_per_second',
                                    'Read rate of all NSDs in a pool in bytes per second',
                                    POOL_LABELS, registry=registry)
        self.pool_write_rate = Gauge('gpfs_pool_write_bytes_per_second',
                                     'Write rate of all NSDs in a pool in bytes per second',
                                     POOL_LABELS, registry=registry)
        self.pool_members = Gauge('gpfs_pool_members', 'NSDs grouped into a pool',
                                  POOL_LABELS, registry=registry)
        self.pool_counter_resets = Gauge('gpfs_pool_counter_resets',
                                         'Pool members whose counters reset during the last interval',
                                         POOL_LABELS, registry=registry)
        self.pool_total = Gauge('gpfs_pool_total_bytes', 'Pool capacity in bytes',
                                POOL_LABELS, registry=registry)
        self.pool_free = Gauge('gpfs_pool_free_bytes', 'Free pool capacity in bytes',
                               POOL_LABELS, registry=registry)
        self.pool_free_fragments = Gauge('gpfs_pool_free_fragments_bytes', 'Pool space free in fragments in bytes',
                                         POOL_LABELS, registry=registry)
        self.pool_disks = Gauge('gpfs_pool_disks', 'Disks in a pool as listed by mmlsdisk',
                                POOL_LABELS, registry=registry)
        self.nsd_size = Gauge('gpfs_nsd_size_bytes', 'NSD capacity in bytes',
                              NSD_LABELS, registry=registry)
        self.nsd_free = Gauge('gpfs_nsd_free_bytes', 'Free NSD capacity in full blocks in bytes',
                              NSD_LABELS, registry=registry)
        self.nsd_free_fragments = Gauge('gpfs_nsd_free_fragments_bytes', 'NSD space free in fragments in bytes',
                                        NSD_LABELS, registry=registry)
        self.fs_size = Gauge('gpfs_filesystem_size_bytes', 'File system capacity in bytes',
                             FS_LABELS, registry=registry)
        self.fs_free = Gauge('gpfs_filesystem_free_bytes', 'Free file system capacity in bytes',
                             FS_LABELS, registry=registry)
        self.fs_free_fragments = Gauge('gpfs_filesystem_free_fragments_bytes',
                                       'File system space free in fragments in bytes',
                                       FS_LABELS, registry=registry)
        self.fileset_max_inodes = Gauge('gpfs_fileset_max_inodes', 'Maximum inodes of a fileset',
                                        FILESET_LABELS, registry=registry)
        self.fileset_alloc_inodes = Gauge('gpfs_fileset_alloc_inodes', 'Allocated inodes of a fileset',
                                          FILESET_LABELS, registry=registry)
        self.quota_usage = Gauge('gpfs_quota_block_usage_bytes', 'Block usage in bytes',
                                 QUOTA_LABELS, registry=registry)
        self.quota_soft = Gauge('gpfs_quota_block_soft_limit_bytes', 'Block soft limit in bytes, 0 if unset',
                                QUOTA_LABELS, registry=registry)
        self.quota_hard = Gauge('gpfs_quota_block_hard_limit_bytes', 'Block hard limit in bytes, 0 if unset',
                                QUOTA_LABELS, registry=registry)
        self.quota_in_doubt = Gauge('gpfs_quota_block_in_doubt_bytes', 'Block usage not yet accounted, in bytes',
                                    QUOTA_LABELS, registry=registry)
        self.quota_grace = Gauge('gpfs_quota_grace_seconds',
                                 'Remaining block grace time in seconds, 0 when expired, -1 when none',
                                 QUOTA_LABELS, registry=registry)
        self.quota_files_usage = Gauge('gpfs_quota_files_usage', 'Files in use',
                                       QUOTA_LABELS, registry=registry)
        self.quota_files_soft = Gauge('gpfs_quota_files_soft_limit', 'Files soft limit, 0 if unset',
                                      QUOTA_LABELS, registry=registry)
        self.quota_files_hard = Gauge('gpfs_quota_files_hard_limit', 'Files hard limit, 0 if unset',
                                      QUOTA_LABELS, registry=registry)
        self.quota_files_in_doubt = Gauge('gpfs_quota_files_in_doubt', 'Files not yet accounted',
                                          QUOTA_LABELS, registry=registry)
        self.stale = Gauge('gpfs_collector_stale', '1 when the published snapshot is stale',
                           registry=registry)
        self.failures = Gauge('gpfs_collector_refresh_failures_total', 'Failed refreshes since start',
                              registry=registry)
        self.unassigned = Gauge('gpfs_collector_unassigned_nsds', 'NSDs without a resolvable pool',
                                registry=registry)
        self.last_refresh = Gauge('gpfs_collector_last_refresh_timestamp_seconds',
                                  'Time of the last successful refresh', registry=registry)

        self._labelled = [
            self.pool_read_rate, self.pool_write_rate, self.pool_members, self.pool_counter_resets,
            self.pool_total, self.pool_free, self.pool_free_fragments, self.pool_disks,
            self.nsd_size, self.nsd_free, self.nsd_free_fragments,
            self.fs_size, self.fs_free, self.fs_free_fragments,
            self.fileset_max_inodes, self.fileset_alloc_inodes,
            self.quota_usage, self.quota_soft, self.quota_hard, self.quota_in_doubt, self.quota_grace,
            self.quota_files_usage, self.quota_files_soft, self.quota_files_hard, self.quota_files_in_doubt,
        ]
        # label sets exported by the previous write, per gauge
        self._exported: Dict[Gauge, Set[Tuple[str, ...]]] = {gauge: set() for gauge in self._labelled}

        # Server management
        self.server_lock = threading.Lock()
        self.server_started = False

        LOG.info("PrometheusWriter initialized")

    def start_server(self) -> None:
        """Start the Prometheus HTTP server if not already started."""
        if not self.port:
            return
        with self.server_lock:
            if not self.server_started:
                try:
                    start_http_server(self.port, registry=self.prometheus_registry)
                    self.server_started = True
                    LOG.info(f"Prometheus metrics server started on port {self.port}")
                except Exception as e:
                    LOG.error(f"Failed to start Prometheus server on port {self.port}: {e}")
                    raise

    def _series(self, snapshot: AggregateSnapshot) -> Dict[Gauge, Series]:
        """Every labelled value the snapshot exports, per gauge."""
        series: Dict[Gauge, Series] = {gauge: {} for gauge in self._labelled}

        for rate in pool_io_rates(snapshot):
            labels = (rate.filesystem, rate.pool)
            series[self.pool_read_rate][labels] = rate.read_rate
            series[self.pool_write_rate][labels] = rate.write_rate
            series[self.pool_members][labels] = rate.members
        for group in snapshot.groups:
            series[self.pool_counter_resets][(group.filesystem, group.pool)] = len(group.reset_members)

        for capacity in pool_capacity(snapshot.pools):
            labels = (capacity.filesystem, capacity.pool)
            series[self.pool_total][labels] = capacity.total_bytes
            series[self.pool_free][labels] = capacity.free_bytes
            series[self.pool_disks][labels] = capacity.disk_count
        for pool in snapshot.pools:
            if pool.free_fragments_bytes is not None:
                series[self.pool_free_fragments][(pool.filesystem, pool.name)] = pool.free_fragments_bytes

        for nsd in snapshot.nsd_capacities:
            labels = (nsd.filesystem or '', nsd.pool, nsd.name, _flag(nsd.is_metadata), _flag(nsd.is_data))
            series[self.nsd_size][labels] = nsd.size_bytes
            series[self.nsd_free][labels] = nsd.free_bytes
            if nsd.free_fragments_bytes is not None:
                series[self.nsd_free_fragments][labels] = nsd.free_fragments_bytes

        for fs in snapshot.fs_capacities:
            labels = (fs.filesystem or '',)
            series[self.fs_size][labels] = fs.size_bytes
            series[self.fs_free][labels] = fs.free_bytes
            if fs.free_fragments_bytes is not None:
                series[self.fs_free_fragments][labels] = fs.free_fragments_bytes

        for fileset in snapshot.filesets:
            labels = (fileset.filesystem, fileset.name)
            series[self.fileset_max_inodes][labels] = fileset.max_inodes
            series[self.fileset_alloc_inodes][labels] = fileset.alloc_inodes

        for status in quota_status(snapshot.quotas):
            labels = (status.filesystem, status.kind.value.lower(), status.name, status.fileset)
            series[self.quota_usage][labels] = status.usage_bytes
            series[self.quota_soft][labels] = status.soft_limit_bytes
            series[self.quota_hard][labels] = status.hard_limit_bytes
            series[self.quota_in_doubt][labels] = status.in_doubt_bytes
            series[self.quota_grace][labels] = status.grace_seconds
            series[self.quota_files_usage][labels] = status.files_usage
            series[self.quota_files_soft][labels] = status.files_soft_limit
            series[self.quota_files_hard][labels] = status.files_hard_limit
            series[self.quota_files_in_doubt][labels] = status.files_in_doubt

        return series

    def _sync(self, series: Dict[Gauge, Series]) -> int:
        """Set all current values, then drop the label sets that vanished. Returns the number removed."""
        for gauge, values in series.items():
            for labels, value in values.items():
                gauge.labels(*labels).set(value)

        removed = 0
        for gauge, values in series.items():
            for labels in self._exported[gauge] - values.keys():
                gauge.remove(*labels)
                removed += 1
            self._exported[gauge] = set(values)
        return removed

    def write(self, snapshot: AggregateSnapshot, loop_iteration: int = 1) -> bool:
        """
        Update all gauges from a snapshot.

        Returns:
            bool: True if successful, False otherwise
        """
        try:
            if not self.server_started:
                self.start_server()

            self.stale.set(1 if snapshot.stale else 0)
            self.failures.set(snapshot.total_failures)
            self.unassigned.set(len(snapshot.unassigned_nsds))
            if snapshot.refreshed_at is not None:
                self.last_refresh.set(snapshot.refreshed_at)

            if snapshot.stale and not self.export_when_stale:
                LOG.debug("Snapshot is stale, exporting status gauges only")
                self._sync({gauge: {} for gauge in self._labelled})
                return True

            removed = self._sync(self._series(snapshot))
            LOG.debug(f"Prometheus gauges updated: {len(snapshot.groups)} groups, {len(snapshot.pools)} pools, "
                      f"{len(snapshot.quotas)} quota entries, {removed} vanished series removed")
            return True

        except Exception as e:
            LOG.error(f"Error writing to Prometheus: {e}", exc_info=True)
            return False

    def render(self) -> str:
        """Current metrics in the text exposition format."""
        return generate_latest(self.prometheus_registry).decode('utf-8')

    def close(self, timeout_seconds: int = 90, force_exit_on_timeout: bool = False) -> None:
        """Close the writer. The HTTP server thread is a daemon and ends with the process."""
        LOG.info("PrometheusWriter closed")
