"""
NSD pool aggregator.

Groups NSDs by (filesystem, pool) and turns successive I/O counter samples
into per-group read and write rates.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from ..schema.models import Disk, FsPoolId, IoSample, Nsd, Pool, PoolGroupAggregate


@dataclass(frozen=True)
class Topology:
    """Decoded disks, NSDs and pools from one collection cycle."""
    nsds: Tuple[Nsd, ...] = ()
    disks: Tuple[Disk, ...] = ()
    pools: Tuple[Pool, ...] = ()


@dataclass(frozen=True)
class Membership:
    """Result of resolving every NSD to its (filesystem, pool) group."""
    groups: Mapping[FsPoolId, FrozenSet[str]]
    devices: Mapping[FsPoolId, Tuple[str, ...]]
    unassigned: Tuple[str, ...] = ()

    def group_of(self, nsd_name: str) -> Optional[FsPoolId]:
        for key, members in self.groups.items():
            if nsd_name in members:
                return key
        return None


@dataclass(frozen=True)
class NsdRate:
    """Per-NSD rate over the last interval."""
    nsd: str
    read_rate: float = 0.0
    write_rate: float = 0.0
    reset: bool = False


@dataclass(frozen=True)
class AggregationResult:
    groups: Tuple[PoolGroupAggregate, ...]
    unassigned: Tuple[str, ...]
    pools: Tuple[Pool, ...] = ()
    rates: Mapping[str, NsdRate] = field(default_factory=dict)
    computed_at: float = 0.0

    def group(self, filesystem: str, pool: str) -> Optional[PoolGroupAggregate]:
        key = FsPoolId(filesystem, pool)
        for aggregate in self.groups:
            if aggregate.key == key:
                return aggregate
        return None


def _locate(nsd: Nsd, disks: Sequence[Disk]) -> Optional[FsPoolId]:
    if nsd.filesystem and nsd.pool:
        return FsPoolId(nsd.filesystem, nsd.pool)

    for disk in disks:
        filesystem = disk.filesystem or nsd.filesystem
        if not filesystem:
            continue
        if nsd.filesystem and disk.filesystem and disk.filesystem != nsd.filesystem:
            continue
        return FsPoolId(filesystem, disk.pool)
    return None


def resolve_membership(nsds: Iterable[Nsd], disks: Iterable[Disk] = ()) -> Membership:
    """
    Assign every NSD to exactly one (filesystem, pool) group.

    The pool comes from the NSD's own pool field when it names both file
    system and pool, otherwise from the mmlsdisk entry backed by the NSD (in
    the NSD's file system when that is known). NSDs that are free or whose
    pool cannot be resolved are returned in ``unassigned``.
    """
    disks_by_nsd: Dict[str, List[Disk]] = {}
    for disk in disks:
        if disk.nsd_name and disk.pool:
            disks_by_nsd.setdefault(disk.nsd_name, []).append(disk)

    groups: Dict[FsPoolId, Set[str]] = {}
    devices: Dict[FsPoolId, List[str]] = {}
    unassigned: List[str] = []
    seen: Set[str] = set()

    for nsd in nsds:
        if nsd.name in seen:
            # mmlsnsd -X lists one row per server; the first row decides
            continue
        seen.add(nsd.name)

        key = _locate(nsd, disks_by_nsd.get(nsd.name, ()))
        if key is None:
            unassigned.append(nsd.name)
            continue

        groups.setdefault(key, set()).add(nsd.name)
        device = nsd.device_name
        if device and device not in devices.setdefault(key, []):
            devices[key].append(device)

    return Membership(
        groups={key: frozenset(members) for key, members in groups.items()},
        devices={key: tuple(devices.get(key, ())) for key in groups},
        unassigned=tuple(unassigned),
    )


def count_pool_disks(pools: Iterable[Pool], disks: Iterable[Disk]) -> Tuple[Pool, ...]:
    """Fill each pool's disk count from mmlsdisk, whichever node serves the disks."""
    names: Dict[FsPoolId, Set[str]] = {}
    for disk in disks:
        if disk.filesystem and disk.pool:
            names.setdefault(FsPoolId(disk.filesystem, disk.pool), set()).add(disk.name)
    result = []
    for pool in pools:
        count = len(names.get(FsPoolId(pool.filesystem, pool.name), ()))
        result.append(replace(pool, disk_count=count) if count else pool)
    return tuple(result)


def compute_rate(previous: Optional[IoSample], current: IoSample) -> NsdRate:
    """
    Rate between two samples of the same NSD.

    No previous sample, or a non-positive elapsed time, gives zero. A counter
    lower than its previous value is a reset: that counter reports zero and
    the rate is tagged as reset.
    """
    if previous is None:
        return NsdRate(current.nsd)

    elapsed = current.timestamp - previous.timestamp
    if elapsed <= 0:
        return NsdRate(current.nsd)

    read_delta = current.read_bytes - previous.read_bytes
    write_delta = current.write_bytes - previous.write_bytes
    reset = read_delta < 0 or write_delta < 0

    return NsdRate(
        nsd=current.nsd,
        read_rate=read_delta / elapsed if read_delta > 0 else 0.0,
        write_rate=write_delta / elapsed if write_delta > 0 else 0.0,
        reset=reset,
    )


class NsdPoolAggregator:
    """
    Stateful rate aggregator.

    Owns the previous-sample table. It must only be driven by one thread, the
    refresh loop; readers go through the published snapshot instead.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._previous: Dict[str, IoSample] = {}

    @property
    def previous_samples(self) -> Mapping[str, IoSample]:
        return dict(self._previous)

    def reset(self) -> None:
        """Forget all previous samples; the next refresh is a cold start."""
        self._previous = {}

    def refresh(self, topology: Topology, samples: Sequence[IoSample],
                now: Optional[float] = None) -> AggregationResult:
        """
        Rebuild membership and compute group rates from the new samples.

        Args:
            topology: decoded NSDs, disks and pools of this cycle
            samples: current counter samples, one per NSD
            now: wall clock time of the refresh, defaults to time.time()

        Returns:
            AggregationResult with one PoolGroupAggregate per group
        """
        now = time.time() if now is None else now
        membership = resolve_membership(topology.nsds, topology.disks)

        current: Dict[str, IoSample] = {}
        for sample in samples:
            known = current.get(sample.nsd)
            if known is None or sample.timestamp >= known.timestamp:
                current[sample.nsd] = sample

        rates = {name: compute_rate(self._previous.get(name), sample) for name, sample in current.items()}

        groups = []
        for key in sorted(membership.groups):
            members = membership.groups[key]
            member_rates = [rates[name] for name in sorted(members) if name in rates]
            groups.append(PoolGroupAggregate(
                key=key,
                members=members,
                read_rate=sum(rate.read_rate for rate in member_rates),
                write_rate=sum(rate.write_rate for rate in member_rates),
                reset_members=frozenset(rate.nsd for rate in member_rates if rate.reset),
                devices=membership.devices.get(key, ()),
            ))

        if membership.unassigned:
            self.logger.debug(f"{len(membership.unassigned)} NSDs without a resolvable pool: {', '.join(membership.unassigned)}")

        reset_count = sum(1 for rate in rates.values() if rate.reset)
        if reset_count:
            self.logger.info(f"Counter reset detected on {reset_count} NSDs, reporting zero for this interval")

        # vanished NSDs drop out here
        self._previous = current

        return AggregationResult(
            groups=tuple(groups),
            unassigned=membership.unassigned,
            pools=count_pool_disks(topology.pools, topology.disks),
            rates=rates,
            computed_at=now,
        )
