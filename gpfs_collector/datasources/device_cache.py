"""
Local NSD device cache.

``mmlsnsd -X`` asks every NSD server for its device mapping and is slow on
large clusters. The mapping of locally served NSDs to block devices only
changes when disks are added or replaced, so it is kept in a small file
under the runtime directory, one ``<nsd>:<device>`` line per NSD, and only
rebuilt when missing, unreadable or forced.
"""

import logging
import os
from typing import Iterable, List

from ..schema.models import Nsd
from ..writer.nmon_writer import atomic_write

LOG = logging.getLogger(__name__)

DEVICE_CACHE_NAME = 'local-nsd-devices'


def format_device_cache(nsds: Iterable[Nsd]) -> str:
    """One ``name:device`` line per NSD with a known device, sorted by name."""
    lines = [f"{nsd.name}:{nsd.device}" for nsd in sorted(nsds, key=lambda n: n.name) if nsd.device]
    return ''.join(f"{line}\n" for line in lines)


def parse_device_cache(text: str, node: str) -> List[Nsd]:
    """
    Parse cache content into NSDs served by ``node``.

    Raises:
        ValueError: on a line without both a name and a device
    """
    nsds = []
    for number, line in enumerate(text.split('\n'), start=1):
        line = line.strip()
        if not line:
            continue
        name, _, device = line.partition(':')
        if not name or not device:
            raise ValueError(f"line {number}: expected <nsd>:<device>, got {line!r}")
        nsds.append(Nsd(name=name, servers=(node,), disk_name=name, device=device))
    return nsds


def read_device_cache(path: str, node: str) -> List[Nsd]:
    with open(path, 'r', encoding='utf-8') as f:
        return parse_device_cache(f.read(), node)


def write_device_cache(path: str, nsds: Iterable[Nsd]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    atomic_write(path, format_device_cache(nsds))


def load_local_devices(path: str, datasource, force: bool = False, strict: bool = False) -> List[Nsd]:
    """
    Local NSDs with their devices, from the cache file when possible.

    Args:
        path: cache file
        datasource: asked for ``local_node_name()`` and, on a rebuild,
            ``served_nsds()``
        force: rebuild even when the file exists
        strict: raise when the rebuilt cache cannot be written instead of
            only logging it

    Returns:
        NSDs served by the local node that have a device
    """
    if not force and os.path.exists(path):
        try:
            nsds = read_device_cache(path, datasource.local_node_name())
            LOG.debug(f"Read {len(nsds)} local NSD devices from {path}")
            return nsds
        except (OSError, ValueError) as e:
            LOG.warning(f"Rebuilding unreadable device cache {path}: {e}")

    nsds = [nsd for nsd in datasource.served_nsds() if nsd.device]
    try:
        write_device_cache(path, nsds)
        LOG.info(f"Cached {len(nsds)} local NSD devices in {path}")
    except OSError as e:
        if strict:
            raise
        LOG.warning(f"Cannot write device cache {path}: {e}")
    return nsds
