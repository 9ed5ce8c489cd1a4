"""Entity models and declared column schemas."""

from .columns import EntityType, ColumnKind, ColumnSpec, ENTITY_SCHEMAS, SECTION_TYPES, entity_type_for
from .models import (
    Disk, Nsd, Pool, NsdCapacity, FilesystemCapacity, QuotaRecord, FilesystemAttribute,
    Fileset, NodeState, ClusterManager, FilesystemManager, IoSample, FsPoolId, PoolGroupAggregate,
    DiskStatus, Availability, QuotaKind, GraceKind, GraceState,
)

__all__ = ['EntityType', 'ColumnKind', 'ColumnSpec', 'ENTITY_SCHEMAS', 'SECTION_TYPES', 'entity_type_for',
           'Disk', 'Nsd', 'Pool', 'NsdCapacity', 'FilesystemCapacity', 'QuotaRecord',
           'FilesystemAttribute', 'Fileset', 'NodeState', 'ClusterManager', 'FilesystemManager', 'IoSample', 'FsPoolId',
           'PoolGroupAggregate', 'DiskStatus', 'Availability', 'QuotaKind', 'GraceKind', 'GraceState']
