"""Replay DataSource implementation.

Replays recorded -Y outputs from a directory, for offline runs and tests.

File names follow ``<command>[.<filesystem>].txt``, e.g. ``mmlsnsd.txt``,
``mmlsdisk.fs1.txt``, ``mmdf.fs1.txt``. I/O samples are read from
``gpfsio.<sequence>.txt`` files; each collect() consumes the next one in
sorted order so successive refreshes see advancing counters.
"""

import glob
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple

from ..schema.models import Nsd, Pool
from .base import (
    Collection, CollectionBuilder, CollectionFailure, DataSource, Managers, local_nsds, managers_from,
)

SAMPLE_COMMAND = 'gpfsio'
SUFFIXES = ('.txt', '.out')


def split_name(path: str) -> Tuple[str, Optional[str]]:
    """``mmdf.fs1.txt`` -> ('mmdf', 'fs1'); ``mmlsnsd.txt`` -> ('mmlsnsd', None)."""
    stem = os.path.basename(path)
    for suffix in SUFFIXES:
        if stem.endswith(suffix):
            stem = stem[:-len(suffix)]
            break
    command, _, rest = stem.partition('.')
    return command, rest or None


class ReplayDataSource(DataSource):
    """DataSource implementation for recorded command output."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.logger = logging.getLogger(__name__)
        self.directory = config.get('replay_dir')
        self.topology_files: List[str] = []
        self.sample_files: List[str] = []
        self._batch = 0

    def initialize(self) -> bool:
        """Scan the replay directory.

        Returns:
            True if the directory exists and holds at least one output file
        """
        if not self.directory or not os.path.isdir(self.directory):
            self.logger.error(f"Replay directory does not exist: {self.directory}")
            return False

        files = sorted(
            path for pattern in SUFFIXES
            for path in glob.glob(os.path.join(self.directory, f"*{pattern}"))
        )
        self.topology_files = [f for f in files if split_name(f)[0] != SAMPLE_COMMAND]
        self.sample_files = [f for f in files if split_name(f)[0] == SAMPLE_COMMAND]
        self._batch = 0

        if not files:
            self.logger.error(f"No recorded outputs in {self.directory}")
            return False

        self.logger.info(f"Replaying {len(self.topology_files)} command outputs and "
                         f"{len(self.sample_files)} sample batches from {self.directory}")
        return True

    def has_more_batches(self) -> bool:
        return self._batch < len(self.sample_files)

    def exhausted(self) -> bool:
        return not self.has_more_batches()

    def _read(self, path: str) -> str:
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                return f.read()
        except OSError as e:
            raise CollectionFailure(str(e), os.path.basename(path))

    def _load_topology(self) -> CollectionBuilder:
        builder = CollectionBuilder()
        for path in self.topology_files:
            command, filesystem = split_name(path)
            builder.add_output(self._read(path), command, filesystem=filesystem)
            if filesystem and filesystem not in builder.filesystems:
                builder.filesystems.append(filesystem)
        return builder

    def list_filesystems(self) -> List[str]:
        return self._load_topology().filesystems

    def _recorded(self, command: str, filesystem: Optional[str] = None) -> CollectionBuilder:
        """Decode the recording of one command, e.g. ``mmdf.fs1.txt``."""
        stem = command if filesystem is None else f"{command}.{filesystem}"
        for suffix in SUFFIXES:
            path = os.path.join(self.directory or '', stem + suffix)
            if os.path.isfile(path):
                builder = CollectionBuilder()
                builder.add_output(self._read(path), command, filesystem=filesystem)
                return builder
        raise CollectionFailure(f"no recorded output {stem}.txt in {self.directory}", command)

    def local_node_name(self) -> str:
        return self._recorded('mmgetstate').node_states[0].node

    def served_nsds(self) -> List[Nsd]:
        return list(local_nsds(self._recorded('mmlsnsd').nsds, self.local_node_name()))

    def filesystem_pools(self, filesystem: str) -> List[Pool]:
        return self._recorded('mmdf', filesystem).pools

    def managers(self) -> Managers:
        return managers_from(self._recorded('mmlsmgr'))

    def collect(self) -> Collection:
        builder = self._load_topology()

        if self.sample_files:
            if not self.has_more_batches():
                raise CollectionFailure("no more sample batches", SAMPLE_COMMAND)
            path = self.sample_files[self._batch]
            self._batch += 1
            builder.add_output(self._read(path), SAMPLE_COMMAND)
            self.logger.debug(f"Replayed sample batch {self._batch}/{len(self.sample_files)}: {os.path.basename(path)}")

        collected_at = max((s.timestamp for s in builder.samples), default=time.time())
        return builder.build(collected_at=collected_at)
