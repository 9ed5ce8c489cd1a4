"""Base DataSource interface and shared data structures."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..aggregation.pool_aggregator import Topology
from ..parser.errors import ParseError
from ..parser.output_parser import ParseSummary, parse_output
from ..schema.columns import EntityType
from ..schema.models import (
    ClusterManager, Disk, Fileset, FilesystemAttribute, FilesystemCapacity,
    FilesystemManager, IoSample, NodeState, Nsd, NsdCapacity, Pool, QuotaRecord,
)

# Entity types a command must yield at least one of for its output to count.
# mmrepquota is absent: a file system without quota entries is valid.
EXPECTED_TYPES: Dict[str, Tuple[EntityType, ...]] = {
    'mmlsnsd': (EntityType.NSD,),
    'mmlsdisk': (EntityType.DISK,),
    'mmdf': (EntityType.POOL,),
    'mmlsfs': (EntityType.FS_ATTRIBUTE,),
    'mmgetstate': (EntityType.NODE_STATE,),
    'mmlsfileset': (EntityType.FILESET,),
    'mmlsmgr': (EntityType.CLUSTER_MANAGER, EntityType.FS_MANAGER),
    'gpfsio': (EntityType.IO_SAMPLE,),
}


class CollectionFailure(Exception):
    """The command collaborator failed or produced empty or unusable output."""

    def __init__(self, message: str, command: Optional[str] = None):
        self.command = command
        super().__init__(f"{command}: {message}" if command else message)


@dataclass
class Collection:
    """Everything one collection cycle produced."""
    topology: Topology
    samples: List[IoSample]
    quotas: List[QuotaRecord] = field(default_factory=list)
    nsd_capacities: List[NsdCapacity] = field(default_factory=list)
    fs_capacities: List[FilesystemCapacity] = field(default_factory=list)
    filesets: List[Fileset] = field(default_factory=list)
    filesystems: List[str] = field(default_factory=list)
    collected_at: float = 0.0
    row_failures: List[ParseError] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class CollectionBuilder:
    """Accumulates decoded entities from several command outputs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.nsds: List[Nsd] = []
        self.disks: List[Disk] = []
        self.pools: List[Pool] = []
        self.nsd_capacities: List[NsdCapacity] = []
        self.fs_capacities: List[FilesystemCapacity] = []
        self.quotas: List[QuotaRecord] = []
        self.filesets: List[Fileset] = []
        self.samples: List[IoSample] = []
        self.filesystems: List[str] = []
        self.node_states: List[NodeState] = []
        self.cluster_managers: List[ClusterManager] = []
        self.fs_managers: List[FilesystemManager] = []
        self.summary = ParseSummary()

        self._targets = {
            EntityType.NSD: self.nsds,
            EntityType.DISK: self.disks,
            EntityType.POOL: self.pools,
            EntityType.NSD_CAPACITY: self.nsd_capacities,
            EntityType.FS_CAPACITY: self.fs_capacities,
            EntityType.QUOTA: self.quotas,
            EntityType.FILESET: self.filesets,
            EntityType.IO_SAMPLE: self.samples,
            EntityType.NODE_STATE: self.node_states,
            EntityType.CLUSTER_MANAGER: self.cluster_managers,
            EntityType.FS_MANAGER: self.fs_managers,
        }

    def add_output(self, text: str, command: str, filesystem: Optional[str] = None,
                   expected: Optional[Iterable[EntityType]] = None) -> int:
        """
        Parse one command's output and keep the entities the collector uses.

        Args:
            text: the command's stdout
            command: command name, used in messages and to look up the
                entity types its output must contain
            filesystem: file system the output belongs to
            expected: entity types of which at least one row must decode,
                defaults to ``EXPECTED_TYPES[command]``

        Returns:
            Number of decoded entities

        Raises:
            CollectionFailure: if the output is empty, nothing in it decoded
                while some rows failed, or none of the expected entity types
                is present
        """
        if not text or not text.strip():
            raise CollectionFailure("empty output", command)

        wanted = tuple(EXPECTED_TYPES.get(command, ()) if expected is None else expected)
        decoded = 0
        failed = 0
        unknown = 0
        found = 0
        for item in self.summary.track(parse_output(text, filesystem)):
            if item.is_error:
                failed += 1
                self.logger.warning(f"{command}: {item.value}")
                continue
            if item.is_unknown:
                unknown += 1
                continue

            decoded += 1
            if item.entity_type in wanted:
                found += 1
            if item.entity_type is EntityType.FS_ATTRIBUTE:
                self._add_filesystem(item.value)
            elif item.entity_type in self._targets:
                self._targets[item.entity_type].append(item.value)

        if decoded == 0 and failed:
            raise CollectionFailure(f"no usable rows, {failed} failed to parse", command)
        if wanted and not found:
            names = '/'.join(t.value for t in wanted)
            detail = f", {unknown} rows of unknown sections" if unknown else ""
            raise CollectionFailure(f"no {names} rows in output{detail}", command)
        return decoded

    def _add_filesystem(self, attribute: FilesystemAttribute) -> None:
        if attribute.filesystem and attribute.filesystem not in self.filesystems:
            self.filesystems.append(attribute.filesystem)

    def build(self, collected_at: Optional[float] = None,
              samples: Optional[List[IoSample]] = None) -> Collection:
        return Collection(
            topology=Topology(nsds=tuple(self.nsds), disks=tuple(self.disks), pools=tuple(self.pools)),
            samples=list(self.samples if samples is None else samples),
            quotas=list(self.quotas),
            nsd_capacities=list(self.nsd_capacities),
            fs_capacities=list(self.fs_capacities),
            filesets=list(self.filesets),
            filesystems=list(self.filesystems),
            collected_at=time.time() if collected_at is None else collected_at,
            row_failures=list(self.summary.errors),
            metadata={'summary': self.summary.to_dict()},
        )


@dataclass(frozen=True)
class Managers:
    """Cluster manager and per file system managers as reported by mmlsmgr."""
    cluster: Optional[ClusterManager]
    filesystems: Tuple[FilesystemManager, ...] = ()


class DataSource(ABC):
    """Abstract base class for all data sources.

    A data source produces one Collection per call and raises
    CollectionFailure when it cannot; the refresh loop treats that as "no
    update this cycle".
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__module__)

    def initialize(self) -> bool:
        """Initialize the data source. Returns True on success."""
        return True

    @abstractmethod
    def collect(self) -> Collection:
        """Collect topology and I/O samples for one refresh."""
        pass

    @abstractmethod
    def list_filesystems(self) -> List[str]:
        """Names of the file systems known to the source."""
        pass

    def local_node_name(self) -> str:
        """Name of the node this collector runs on."""
        raise NotImplementedError

    def served_nsds(self) -> List[Nsd]:
        """NSDs served by the local node, read fresh from the cluster."""
        raise NotImplementedError

    def filesystem_pools(self, filesystem: str) -> List[Pool]:
        """Pool capacities of one file system, without any other collection."""
        raise NotImplementedError

    def managers(self) -> Managers:
        """Cluster and file system managers."""
        raise NotImplementedError

    def exhausted(self) -> bool:
        """True when the source has nothing further to deliver (finite replays only)."""
        return False

    def cleanup(self) -> None:
        """Clean up any resources used by the data source."""
        pass


def local_nsds(nsds: Iterable[Nsd], node: str) -> Tuple[Nsd, ...]:
    """NSDs served by ``node``."""
    return tuple(nsd for nsd in nsds if node in nsd.servers)


def managers_from(builder: CollectionBuilder) -> Managers:
    return Managers(
        cluster=builder.cluster_managers[0] if builder.cluster_managers else None,
        filesystems=tuple(builder.fs_managers),
    )
