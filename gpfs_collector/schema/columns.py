"""
Declared column schemas for every -Y section this package understands.

Each entity type lists the columns its decoder reads together with their
value kind and whether the row is unusable without them. Columns not listed
here are kept on the bound row but never read, so newer releases that add
columns keep parsing.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class EntityType(Enum):
    """Entity types decoded from -Y sections."""
    DISK = "disk"
    NSD = "nsd"
    POOL = "pool"
    NSD_CAPACITY = "nsd_capacity"
    FS_CAPACITY = "fs_capacity"
    QUOTA = "quota"
    FS_ATTRIBUTE = "fs_attribute"
    FILESET = "fileset"
    NODE_STATE = "node_state"
    IO_SAMPLE = "io_sample"
    CLUSTER_MANAGER = "cluster_manager"
    FS_MANAGER = "fs_manager"
    UNKNOWN = "unknown"


class ColumnKind(Enum):
    """How a raw column value is converted."""
    STRING = "string"
    INTEGER = "integer"          # unsigned 64-bit
    SIGNED = "signed"            # signed 64-bit
    KILOBYTES = "kilobytes"      # unsigned KiB, exposed as bytes
    SIGNED_KILOBYTES = "signed_kilobytes"
    BOOLEAN = "boolean"          # Yes/No/1/0
    STATUS = "status"            # enumerated, unknown values tolerated
    GRACE = "grace"              # none/expired/<n> <unit>
    LIST = "list"                # comma separated
    TIMESTAMP = "timestamp"      # epoch seconds


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    kind: ColumnKind
    required: bool = True


def _schema(*columns: ColumnSpec) -> Dict[str, ColumnSpec]:
    return {column.name: column for column in columns}


C = ColumnSpec
K = ColumnKind

ENTITY_SCHEMAS: Dict[EntityType, Dict[str, ColumnSpec]] = {
    # mmlsdisk <fs> -Y
    EntityType.DISK: _schema(
        C('nsdName', K.STRING),
        C('driverType', K.STRING, required=False),
        C('failureGroup', K.STRING),
        C('metadata', K.BOOLEAN),
        C('data', K.BOOLEAN),
        C('status', K.STATUS),
        C('availability', K.STATUS),
        C('storagePool', K.STRING),
        C('diskSizeKB', K.KILOBYTES, required=False),
        C('diskID', K.STRING, required=False),
    ),
    # mmlsnsd -X -Y
    EntityType.NSD: _schema(
        C('diskName', K.STRING),
        C('serverList', K.LIST),
        C('fileSystem', K.STRING, required=False),
        C('localDiskName', K.STRING, required=False),
        C('volumeId', K.STRING, required=False),
        C('storagePool', K.STRING, required=False),
    ),
    # mmdf <fs> -Y, poolTotal section
    EntityType.POOL: _schema(
        C('poolName', K.STRING),
        C('poolSize', K.KILOBYTES),
        C('freeBlocks', K.KILOBYTES),
        C('freeFragments', K.KILOBYTES, required=False),
    ),
    # mmdf <fs> -Y, nsd section
    EntityType.NSD_CAPACITY: _schema(
        C('nsdName', K.STRING),
        C('storagePool', K.STRING),
        C('diskSize', K.KILOBYTES),
        C('failureGroup', K.STRING, required=False),
        C('metadata', K.BOOLEAN),
        C('data', K.BOOLEAN),
        C('freeBlocks', K.KILOBYTES),
        C('freeBlocksPct', K.INTEGER, required=False),
        C('freeFragments', K.KILOBYTES, required=False),
    ),
    # mmdf <fs> -Y, fsTotal section
    EntityType.FS_CAPACITY: _schema(
        C('fsSize', K.KILOBYTES),
        C('freeBlocks', K.KILOBYTES),
        C('freeBlocksPct', K.INTEGER, required=False),
        C('freeFragments', K.KILOBYTES, required=False),
    ),
    # mmrepquota -Y
    EntityType.QUOTA: _schema(
        C('filesystemName', K.STRING),
        C('quotaType', K.STRING),
        C('id', K.INTEGER),
        C('name', K.STRING),
        C('blockUsage', K.SIGNED_KILOBYTES),
        C('blockQuota', K.KILOBYTES),
        C('blockLimit', K.KILOBYTES),
        C('blockInDoubt', K.SIGNED_KILOBYTES, required=False),
        C('blockGrace', K.GRACE, required=False),
        C('filesUsage', K.SIGNED),
        C('filesQuota', K.INTEGER),
        C('filesLimit', K.INTEGER),
        C('filesInDoubt', K.SIGNED, required=False),
        C('filesGrace', K.GRACE, required=False),
        C('filesetname', K.STRING, required=False),
    ),
    # mmlsfs all -Y
    EntityType.FS_ATTRIBUTE: _schema(
        C('deviceName', K.STRING),
        C('fieldName', K.STRING, required=False),
        C('data', K.STRING, required=False),
    ),
    # mmlsfileset <fs> -Y
    EntityType.FILESET: _schema(
        C('filesystemName', K.STRING),
        C('filesetName', K.STRING),
        C('maxInodes', K.INTEGER),
        C('allocInodes', K.INTEGER),
        C('status', K.STRING, required=False),
        C('path', K.STRING, required=False),
    ),
    # mmgetstate -Y
    EntityType.NODE_STATE: _schema(
        C('nodeName', K.STRING),
        C('state', K.STRING),
    ),
    # mmlsmgr -Y, clusterManager section
    EntityType.CLUSTER_MANAGER: _schema(
        C('manager', K.STRING),
        C('managerIP', K.STRING, required=False),
    ),
    # mmlsmgr -Y, filesystemManager section
    EntityType.FS_MANAGER: _schema(
        C('filesystem', K.STRING),
        C('manager', K.STRING),
        C('managerIP', K.STRING, required=False),
    ),
    # gpfsio:nsd, emitted by node-local I/O samplers
    EntityType.IO_SAMPLE: _schema(
        C('nsdName', K.STRING),
        C('readBytes', K.INTEGER),
        C('writeBytes', K.INTEGER),
        C('timestamp', K.TIMESTAMP),
    ),
}

# (command, section) -> entity type
SECTION_TYPES: Dict[Tuple[str, str], EntityType] = {
    ('mmlsdisk', ''): EntityType.DISK,
    ('mmlsnsd', 'nsd'): EntityType.NSD,
    ('mmdf', 'poolTotal'): EntityType.POOL,
    ('mmdf', 'nsd'): EntityType.NSD_CAPACITY,
    ('mmdf', 'fsTotal'): EntityType.FS_CAPACITY,
    ('mmrepquota', ''): EntityType.QUOTA,
    ('mmlsfs', ''): EntityType.FS_ATTRIBUTE,
    ('mmlsfileset', ''): EntityType.FILESET,
    ('mmgetstate', ''): EntityType.NODE_STATE,
    ('mmlsmgr', 'clusterManager'): EntityType.CLUSTER_MANAGER,
    ('mmlsmgr', 'filesystemManager'): EntityType.FS_MANAGER,
    ('gpfsio', 'nsd'): EntityType.IO_SAMPLE,
}


def entity_type_for(command: str, section: str) -> Optional[EntityType]:
    """Look up the entity type for a section tag, None if not known."""
    return SECTION_TYPES.get((command, section))


def required_columns(entity_type: EntityType) -> Tuple[str, ...]:
    schema = ENTITY_SCHEMAS.get(entity_type, {})
    return tuple(name for name, spec in schema.items() if spec.required)
