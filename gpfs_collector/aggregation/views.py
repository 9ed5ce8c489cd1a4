"""Read-only views over a published snapshot for the metrics exporter and the CLI."""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..schema.base_model import BaseModel
from ..schema.models import GraceKind, GraceState, Pool, QuotaKind, QuotaRecord


@dataclass(frozen=True)
class PoolCapacity(BaseModel):
    filesystem: str
    pool: str
    total_bytes: int
    free_bytes: int
    used_bytes: int
    used_percent: int
    disk_count: int


@dataclass(frozen=True)
class PoolIoRate(BaseModel):
    filesystem: str
    pool: str
    read_rate: float
    write_rate: float
    members: int
    reset: bool
    stale: bool


@dataclass(frozen=True)
class QuotaStatus(BaseModel):
    kind: QuotaKind
    name: str
    filesystem: str
    fileset: str
    usage_bytes: int
    soft_limit_bytes: int
    hard_limit_bytes: int
    grace: GraceState
    in_doubt_bytes: int = 0
    files_usage: int = 0
    files_soft_limit: int = 0
    files_hard_limit: int = 0
    files_in_doubt: int = 0

    @property
    def grace_seconds(self) -> float:
        """-1 when no grace period runs, 0 when expired, else seconds remaining."""
        seconds = self.grace.seconds
        return -1.0 if seconds is None else seconds

    @property
    def over_soft_limit(self) -> bool:
        return self.soft_limit_bytes > 0 and self.usage_bytes > self.soft_limit_bytes

    @property
    def over_hard_limit(self) -> bool:
        return self.hard_limit_bytes > 0 and self.usage_bytes >= self.hard_limit_bytes


def pool_capacity(pools: Iterable[Pool]) -> List[PoolCapacity]:
    return [
        PoolCapacity(
            filesystem=pool.filesystem,
            pool=pool.name,
            total_bytes=pool.total_bytes,
            free_bytes=pool.free_bytes,
            used_bytes=pool.used_bytes,
            used_percent=pool.used_percent,
            disk_count=pool.disk_count,
        )
        for pool in pools
    ]


def pool_io_rates(snapshot) -> List[PoolIoRate]:
    return [
        PoolIoRate(
            filesystem=group.filesystem,
            pool=group.pool,
            read_rate=group.read_rate,
            write_rate=group.write_rate,
            members=len(group.members),
            reset=bool(group.reset_members),
            stale=snapshot.stale,
        )
        for group in snapshot.groups
    ]


def quota_status(records: Iterable[QuotaRecord]) -> List[QuotaStatus]:
    return [
        QuotaStatus(
            kind=record.kind,
            name=record.entity_name,
            filesystem=record.filesystem,
            fileset=record.fileset,
            usage_bytes=record.block_usage_bytes,
            soft_limit_bytes=record.block_soft_bytes,
            hard_limit_bytes=record.block_hard_bytes,
            grace=record.block_grace,
            in_doubt_bytes=record.block_in_doubt_bytes,
            files_usage=record.files_usage,
            files_soft_limit=record.files_soft,
            files_hard_limit=record.files_hard,
            files_in_doubt=record.files_in_doubt,
        )
        for record in records
    ]


def find_pool(pools: Iterable[Pool], filesystem: str, pool: str) -> Optional[PoolCapacity]:
    for capacity in pool_capacity(pools):
        if capacity.filesystem == filesystem and capacity.pool == pool:
            return capacity
    return None


def is_expired(status: QuotaStatus) -> bool:
    return status.grace.kind is GraceKind.EXPIRED
