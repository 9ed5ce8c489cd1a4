from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Tuple, Type
import re

from .base_model import BaseModel

U64_MAX = 2 ** 64 - 1
I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1


# ----------------------------------------------------------------------------
# enumerated values
# ----------------------------------------------------------------------------

class DiskState(Enum):
    READY = "ready"
    SUSPENDED = "suspended"
    DOWN = "down"
    UNRECOVERED = "unrecovered"
    UNKNOWN = "unknown"


class AvailabilityState(Enum):
    UP = "up"
    DOWN = "down"
    RECOVERING = "recovering"
    UNRECOVERED = "unrecovered"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EnumeratedStatus:
    """
    A status column value.

    Recognised strings map onto ``STATES``; anything else becomes the UNKNOWN
    state while ``raw`` keeps the original text, so a status string that was
    introduced after this schema was written never fails a row.
    """
    state: Enum
    raw: str

    STATES: ClassVar[Type[Enum]] = DiskState

    @classmethod
    def parse(cls, raw: str):
        text = (raw or '').strip()
        try:
            state = cls.STATES(text.lower())
        except ValueError:
            state = cls.STATES('unknown')
        return cls(state=state, raw=text)

    @property
    def is_unknown(self) -> bool:
        return self.state.value == 'unknown'

    def to_plain(self) -> str:
        return self.raw

    def __str__(self) -> str:
        return self.raw


class DiskStatus(EnumeratedStatus):
    """mmlsdisk ``status`` column (ready, suspended, down, unrecovered, other)."""
    STATES = DiskState


class Availability(EnumeratedStatus):
    """mmlsdisk ``availability`` column."""
    STATES = AvailabilityState


class QuotaKind(Enum):
    USER = "USR"
    GROUP = "GRP"
    FILESET = "FILESET"

    @classmethod
    def parse(cls, raw: str) -> 'QuotaKind':
        """Raises ValueError for anything but USR/GRP/FILESET."""
        return cls(raw.strip().upper())


class GraceKind(Enum):
    NONE = "none"
    EXPIRED = "expired"
    WITHIN = "within"


# unit suffixes as printed by mmrepquota
GRACE_UNITS: Dict[str, int] = {
    'second': 1, 'seconds': 1, 'sec': 1, 'secs': 1,
    'minute': 60, 'minutes': 60, 'min': 60, 'mins': 60,
    'hour': 3600, 'hours': 3600, 'hr': 3600, 'hrs': 3600,
    'day': 86400, 'days': 86400,
    'week': 604800, 'weeks': 604800,
}

_GRACE_RE = re.compile(r'^(\d+)\s*([A-Za-z]+)$')


@dataclass(frozen=True)
class GraceState:
    """Quota grace period state: none, expired, or within grace with time remaining."""
    kind: GraceKind
    remaining: Optional[timedelta] = None

    @classmethod
    def parse(cls, raw: str) -> 'GraceState':
        """
        Parse a grace column value.

        Raises:
            ValueError: for syntax or unit suffixes that mmrepquota does not print
        """
        text = (raw or '').strip().lower()
        if text in ('', 'none'):
            return cls(GraceKind.NONE)
        if text == 'expired':
            return cls(GraceKind.EXPIRED)

        match = _GRACE_RE.match(text)
        if not match:
            raise ValueError(f"invalid grace value: {raw!r}")

        amount, unit = match.groups()
        if unit not in GRACE_UNITS:
            raise ValueError(f"unknown grace unit {unit!r} in {raw!r}")

        return cls(GraceKind.WITHIN, timedelta(seconds=int(amount) * GRACE_UNITS[unit]))

    @property
    def seconds(self) -> Optional[float]:
        """Remaining seconds, 0 when expired, None when no grace period is running."""
        if self.kind is GraceKind.EXPIRED:
            return 0.0
        if self.remaining is None:
            return None
        return self.remaining.total_seconds()

    def to_plain(self) -> Any:
        if self.kind is GraceKind.WITHIN:
            return self.seconds
        return self.kind.value


GRACE_NONE = GraceState(GraceKind.NONE)


# ----------------------------------------------------------------------------
# entities
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class Disk(BaseModel):
    """A disk as reported by mmlsdisk."""
    name: str
    nsd_name: Optional[str]   # None for disks that are not NSD backed
    size_bytes: Optional[int]
    failure_group: str
    status: DiskStatus
    availability: Availability
    pool: str
    is_metadata: bool
    is_data: bool
    filesystem: Optional[str] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class Nsd(BaseModel):
    """A Network Shared Disk as reported by mmlsnsd."""
    name: str
    servers: Tuple[str, ...]
    disk_name: str
    pool: Optional[str] = None
    filesystem: Optional[str] = None   # None when the NSD is a free disk
    device: Optional[str] = None       # local block device, only with mmlsnsd -X
    volume_id: Optional[str] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def device_name(self) -> Optional[str]:
        """Block device basename, e.g. ``dm-1`` for ``/dev/dm-1``."""
        if not self.device:
            return None
        return self.device.rstrip('/').rsplit('/', 1)[-1] or None


@dataclass(frozen=True)
class Pool(BaseModel):
    """Storage pool capacity (mmdf poolTotal)."""
    filesystem: str
    name: str
    total_bytes: int
    free_bytes: int
    disk_count: int = 0
    free_fragments_bytes: Optional[int] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @property
    def used_bytes(self) -> int:
        return max(self.total_bytes - self.free_bytes, 0)

    @property
    def used_percent(self) -> int:
        """Used capacity in whole percent, 0 for empty pools."""
        if self.total_bytes == 0:
            return 0
        return self.used_bytes * 100 // self.total_bytes


@dataclass(frozen=True)
class NsdCapacity(BaseModel):
    """Per-NSD capacity (mmdf nsd section)."""
    filesystem: Optional[str]
    name: str
    pool: str
    size_bytes: int
    free_bytes: int
    is_metadata: bool
    is_data: bool
    failure_group: Optional[str] = None
    free_percent: Optional[int] = None
    free_fragments_bytes: Optional[int] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class FilesystemCapacity(BaseModel):
    """File system totals (mmdf fsTotal section)."""
    filesystem: Optional[str]
    size_bytes: int
    free_bytes: int
    free_percent: Optional[int] = None
    free_fragments_bytes: Optional[int] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class QuotaRecord(BaseModel):
    """One mmrepquota entry. Block values are bytes, file values are counts."""
    kind: QuotaKind
    entity_id: int
    entity_name: str
    filesystem: str
    block_usage_bytes: int
    block_soft_bytes: int
    block_hard_bytes: int
    files_usage: int
    files_soft: int
    files_hard: int
    block_in_doubt_bytes: int = 0
    files_in_doubt: int = 0
    block_grace: GraceState = GRACE_NONE
    files_grace: GraceState = GRACE_NONE
    fileset: str = ''
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class FilesystemAttribute(BaseModel):
    """One mmlsfs attribute row."""
    filesystem: str
    field_name: Optional[str]
    value: Optional[str]
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class Fileset(BaseModel):
    """One mmlsfileset row."""
    filesystem: str
    name: str
    max_inodes: int
    alloc_inodes: int
    status: Optional[str] = None
    path: Optional[str] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class NodeState(BaseModel):
    """One mmgetstate row."""
    node: str
    state: str
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class ClusterManager(BaseModel):
    """The cluster manager node (mmlsmgr clusterManager section)."""
    name: str
    ip: Optional[str] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class FilesystemManager(BaseModel):
    """The manager node of one file system (mmlsmgr filesystemManager section)."""
    filesystem: str
    name: str
    ip: Optional[str] = None
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


@dataclass(frozen=True)
class IoSample(BaseModel):
    """Monotonic per-NSD byte counters at one point in time."""
    nsd: str
    read_bytes: int
    write_bytes: int
    timestamp: float
    _raw_data: Dict[str, str] = field(default_factory=dict, compare=False, hash=False, repr=False)


# ----------------------------------------------------------------------------
# aggregation
# ----------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class FsPoolId:
    """File system and pool pair used as the aggregation key."""
    filesystem: str
    pool: str

    @property
    def label(self) -> str:
        return f"{self.filesystem}-{self.pool}"

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class PoolGroupAggregate(BaseModel):
    """
    I/O rates for all NSDs of one (filesystem, pool) group.

    ``reset_members`` lists NSDs whose counters went backwards this interval;
    they contribute zero to the rates.
    """
    key: FsPoolId
    members: FrozenSet[str]
    read_rate: float = 0.0
    write_rate: float = 0.0
    reset_members: FrozenSet[str] = frozenset()
    devices: Tuple[str, ...] = ()

    @property
    def filesystem(self) -> str:
        return self.key.filesystem

    @property
    def pool(self) -> str:
        return self.key.pool

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        result = super().to_dict(include_raw)
        result['key'] = self.key.label
        return result
