"""
nmon feed writer.

Writes two small files under the runtime directory on every refresh:

- the rate feed, one ``<fs>-<pool> <read_rate> <write_rate>`` line per group
  with rates in bytes per second
- the device group file, one ``<fs>-<pool> dev1 dev2 ...`` line per group,
  the disk group layout nmon reads with ``-g``

Both are replaced atomically so nmon never reads a half-written file.
"""

import logging
import os
import tempfile
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ..cache.aggregate_cache import AggregateSnapshot
from ..schema.models import FsPoolId, PoolGroupAggregate
from .base import Writer

LOG = logging.getLogger(__name__)

DEFAULT_RUNTIME_DIR = '/run/gpfs-collector'
RATES_FILE = 'nmon-groups'
DEVICES_FILE = 'nmon-devices'


def format_rates(groups: Iterable[PoolGroupAggregate]) -> str:
    lines = [f"{group.key.label} {group.read_rate:.1f} {group.write_rate:.1f}" for group in groups]
    return ''.join(f"{line}\n" for line in lines)


def format_device_groups(devices: Mapping[FsPoolId, Tuple[str, ...]]) -> str:
    """Device group lines; groups without a local device are left out."""
    lines = []
    for key in sorted(devices):
        if devices[key]:
            lines.append(f"{key.label} {' '.join(devices[key])}")
    return ''.join(f"{line}\n" for line in lines)


def atomic_write(path: str, content: str) -> None:
    """Write ``content`` to a temp file next to ``path`` and rename it into place."""
    directory = os.path.dirname(path) or '.'
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", dir=directory)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class NmonWriter(Writer):
    """Writes the nmon rate feed and device group file."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.runtime_dir = config.get('runtime_dir') or DEFAULT_RUNTIME_DIR
        self.rates_path = config.get('nmon_rates_file') or os.path.join(self.runtime_dir, RATES_FILE)
        self.devices_path = config.get('nmon_devices_file') or os.path.join(self.runtime_dir, DEVICES_FILE)
        self.skip_when_stale = config.get('skip_when_stale', True)
        self.writes = 0

    def prepare(self) -> None:
        """
        Create the feed directories.

        Raises:
            OSError: if a directory cannot be created or is not writable
        """
        for path in (self.rates_path, self.devices_path):
            directory = os.path.dirname(path) or '.'
            os.makedirs(directory, exist_ok=True)
            if not os.access(directory, os.W_OK):
                raise PermissionError(f"feed directory {directory} is not writable")
        LOG.info(f"nmon feed -> {self.rates_path}, device groups -> {self.devices_path}")

    def write(self, snapshot: AggregateSnapshot, loop_iteration: int = 1) -> bool:
        if snapshot.stale and self.skip_when_stale:
            LOG.debug("Snapshot is stale, leaving nmon feed untouched")
            return True
        if snapshot.is_empty:
            return True

        try:
            atomic_write(self.rates_path, format_rates(snapshot.groups))
            atomic_write(self.devices_path, format_device_groups(
                {group.key: group.devices for group in snapshot.groups}))
        except OSError as e:
            LOG.error(f"Failed to write nmon feed: {e}")
            return False

        self.writes += 1
        LOG.debug(f"nmon feed updated with {len(snapshot.groups)} groups (iteration {loop_iteration})")
        return True
