"""
Block device counters from sysfs.

``/sys/block/<dev>/stat`` holds whitespace separated counters; field 3 is
sectors read and field 7 sectors written. Sectors are always 512 bytes
there, whatever the device's logical block size.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..schema.models import IoSample, Nsd

LOG = logging.getLogger(__name__)

SYSFS_BLOCK = '/sys/block'
SECTOR_SIZE = 512

READ_SECTORS_FIELD = 2
WRITE_SECTORS_FIELD = 6


@dataclass(frozen=True)
class BlockStat:
    read_sectors: int
    write_sectors: int

    @property
    def read_bytes(self) -> int:
        return self.read_sectors * SECTOR_SIZE

    @property
    def write_bytes(self) -> int:
        return self.write_sectors * SECTOR_SIZE


def parse_stat(text: str) -> BlockStat:
    """
    Parse the content of one stat file.

    Raises:
        ValueError: if the file has too few fields or non-numeric values
    """
    tokens = text.split()
    if len(tokens) <= WRITE_SECTORS_FIELD:
        raise ValueError(f"expected at least {WRITE_SECTORS_FIELD + 1} fields, got {len(tokens)}")
    return BlockStat(
        read_sectors=int(tokens[READ_SECTORS_FIELD]),
        write_sectors=int(tokens[WRITE_SECTORS_FIELD]),
    )


def read_stat(device: str, root: str = SYSFS_BLOCK) -> BlockStat:
    path = os.path.join(root, device, 'stat')
    with open(path, 'r', encoding='utf-8') as f:
        return parse_stat(f.read())


def sample_nsds(nsds: Iterable[Nsd], root: str = SYSFS_BLOCK,
                timestamp: Optional[float] = None) -> List[IoSample]:
    """
    One IoSample per NSD that has a local block device.

    NSDs without a local device, or whose device has no stat file on this
    node, produce no sample.
    """
    timestamp = time.time() if timestamp is None else timestamp
    samples = []
    seen = set()
    for nsd in nsds:
        device = nsd.device_name
        if not device or nsd.name in seen:
            continue
        seen.add(nsd.name)
        try:
            stat = read_stat(device, root)
        except (OSError, ValueError) as e:
            LOG.debug(f"No block stats for NSD {nsd.name} ({device}): {e}")
            continue
        samples.append(IoSample(
            nsd=nsd.name,
            read_bytes=stat.read_bytes,
            write_bytes=stat.write_bytes,
            timestamp=timestamp,
        ))
    return samples
