"""
Typed entity decoders.

One pure function per entity type; each takes a bound row (plus the file
system context for per-filesystem commands whose rows do not name it) and
returns the entity or raises DecodeError. Decoders only read columns declared
in ``schema.columns``.
"""

from typing import Any, Callable, Dict, Optional

from .binder import BoundRow
from .errors import DecodeError
from ..schema.columns import EntityType
from ..schema.models import (
    Availability, ClusterManager, Disk, DiskStatus, Fileset, FilesystemAttribute,
    FilesystemCapacity, FilesystemManager, IoSample, NodeState, Nsd, NsdCapacity,
    Pool, QuotaKind, QuotaRecord,
)

# mmlsnsd prints this in the fileSystem column for unassigned NSDs
FREE_DISK = '(free disk)'

Decoder = Callable[[BoundRow, Optional[str]], Any]


def decode_disk(row: BoundRow, filesystem: Optional[str] = None) -> Disk:
    name = row.string('nsdName')
    driver_type = row.optional_string('driverType')

    # Only NSD-backed disks (driverType 'nsd', or older output without the column) own an NSD.
    nsd_name = name if driver_type is None or driver_type.lower() == 'nsd' else None

    return Disk(
        name=name,
        nsd_name=nsd_name,
        size_bytes=row.kilobytes('diskSizeKB'),
        failure_group=row.string('failureGroup'),
        status=row.status('status', DiskStatus),
        availability=row.status('availability', Availability),
        pool=row.string('storagePool'),
        is_metadata=row.boolean('metadata'),
        is_data=row.boolean('data'),
        filesystem=filesystem,
        _raw_data=dict(row.values),
    )


def decode_nsd(row: BoundRow, filesystem: Optional[str] = None) -> Nsd:
    name = row.string('diskName')

    fs_name = row.optional_string('fileSystem')
    if fs_name == FREE_DISK:
        fs_name = None

    return Nsd(
        name=name,
        servers=tuple(row.string_list('serverList')),
        disk_name=name,
        pool=row.optional_string('storagePool'),
        filesystem=fs_name or filesystem,
        device=row.optional_string('localDiskName'),
        volume_id=row.optional_string('volumeId'),
        _raw_data=dict(row.values),
    )


def decode_pool(row: BoundRow, filesystem: Optional[str] = None) -> Pool:
    total = row.kilobytes('poolSize')
    free = row.kilobytes('freeBlocks')
    if free > total:
        raise DecodeError(EntityType.POOL.value, 'freeBlocks',
                          f"free capacity {free} exceeds total {total}", row.line_number)

    return Pool(
        filesystem=filesystem or '',
        name=row.string('poolName'),
        total_bytes=total,
        free_bytes=free,
        free_fragments_bytes=row.kilobytes('freeFragments'),
        _raw_data=dict(row.values),
    )


def decode_nsd_capacity(row: BoundRow, filesystem: Optional[str] = None) -> NsdCapacity:
    return NsdCapacity(
        filesystem=filesystem,
        name=row.string('nsdName'),
        pool=row.string('storagePool'),
        size_bytes=row.kilobytes('diskSize'),
        free_bytes=row.kilobytes('freeBlocks'),
        is_metadata=row.boolean('metadata'),
        is_data=row.boolean('data'),
        failure_group=row.optional_string('failureGroup'),
        free_percent=row.integer('freeBlocksPct'),
        free_fragments_bytes=row.kilobytes('freeFragments'),
        _raw_data=dict(row.values),
    )


def decode_fs_capacity(row: BoundRow, filesystem: Optional[str] = None) -> FilesystemCapacity:
    return FilesystemCapacity(
        filesystem=filesystem,
        size_bytes=row.kilobytes('fsSize'),
        free_bytes=row.kilobytes('freeBlocks'),
        free_percent=row.integer('freeBlocksPct'),
        free_fragments_bytes=row.kilobytes('freeFragments'),
        _raw_data=dict(row.values),
    )


def decode_quota(row: BoundRow, filesystem: Optional[str] = None) -> QuotaRecord:
    raw_kind = row.string('quotaType')
    try:
        kind = QuotaKind.parse(raw_kind)
    except ValueError:
        raise DecodeError(EntityType.QUOTA.value, 'quotaType',
                          f"unknown quota type: {raw_kind!r}", row.line_number)

    return QuotaRecord(
        kind=kind,
        entity_id=row.integer('id'),
        entity_name=row.string('name'),
        filesystem=row.string('filesystemName') or (filesystem or ''),
        block_usage_bytes=row.kilobytes('blockUsage', signed=True),
        block_soft_bytes=row.kilobytes('blockQuota'),
        block_hard_bytes=row.kilobytes('blockLimit'),
        block_in_doubt_bytes=row.kilobytes('blockInDoubt', signed=True) or 0,
        block_grace=row.grace('blockGrace'),
        files_usage=row.signed('filesUsage'),
        files_soft=row.integer('filesQuota'),
        files_hard=row.integer('filesLimit'),
        files_in_doubt=row.signed('filesInDoubt') or 0,
        files_grace=row.grace('filesGrace'),
        fileset=row.string('filesetname'),
        _raw_data=dict(row.values),
    )


def decode_fs_attribute(row: BoundRow, filesystem: Optional[str] = None) -> FilesystemAttribute:
    return FilesystemAttribute(
        filesystem=row.string('deviceName'),
        field_name=row.optional_string('fieldName'),
        value=row.optional_string('data'),
        _raw_data=dict(row.values),
    )


def decode_fileset(row: BoundRow, filesystem: Optional[str] = None) -> Fileset:
    return Fileset(
        filesystem=row.string('filesystemName') or (filesystem or ''),
        name=row.string('filesetName'),
        max_inodes=row.integer('maxInodes'),
        alloc_inodes=row.integer('allocInodes'),
        status=row.optional_string('status'),
        path=row.optional_string('path'),
        _raw_data=dict(row.values),
    )


def decode_node_state(row: BoundRow, filesystem: Optional[str] = None) -> NodeState:
    return NodeState(
        node=row.string('nodeName'),
        state=row.string('state'),
        _raw_data=dict(row.values),
    )


def decode_cluster_manager(row: BoundRow, filesystem: Optional[str] = None) -> ClusterManager:
    return ClusterManager(
        name=row.string('manager'),
        ip=row.optional_string('managerIP'),
        _raw_data=dict(row.values),
    )


def decode_fs_manager(row: BoundRow, filesystem: Optional[str] = None) -> FilesystemManager:
    return FilesystemManager(
        filesystem=row.string('filesystem'),
        name=row.string('manager'),
        ip=row.optional_string('managerIP'),
        _raw_data=dict(row.values),
    )


def decode_io_sample(row: BoundRow, filesystem: Optional[str] = None) -> IoSample:
    return IoSample(
        nsd=row.string('nsdName'),
        read_bytes=row.integer('readBytes'),
        write_bytes=row.integer('writeBytes'),
        timestamp=row.timestamp('timestamp'),
        _raw_data=dict(row.values),
    )


DECODERS: Dict[EntityType, Decoder] = {
    EntityType.DISK: decode_disk,
    EntityType.NSD: decode_nsd,
    EntityType.POOL: decode_pool,
    EntityType.NSD_CAPACITY: decode_nsd_capacity,
    EntityType.FS_CAPACITY: decode_fs_capacity,
    EntityType.QUOTA: decode_quota,
    EntityType.FS_ATTRIBUTE: decode_fs_attribute,
    EntityType.FILESET: decode_fileset,
    EntityType.NODE_STATE: decode_node_state,
    EntityType.CLUSTER_MANAGER: decode_cluster_manager,
    EntityType.FS_MANAGER: decode_fs_manager,
    EntityType.IO_SAMPLE: decode_io_sample,
}
