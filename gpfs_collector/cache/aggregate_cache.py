import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from ..aggregation.pool_aggregator import AggregationResult
from ..schema.models import Fileset, FilesystemCapacity, NsdCapacity, Pool, PoolGroupAggregate, QuotaRecord

DEFAULT_STALE_AFTER_FAILURES = 3


@dataclass(frozen=True)
class AggregateSnapshot:
    """
    One fully committed aggregation state.

    Snapshots are immutable; the cache replaces the whole object on every
    publish so a reader holding a reference never sees a partial update.
    """
    groups: Tuple[PoolGroupAggregate, ...] = ()
    refreshed_at: Optional[float] = None
    stale: bool = False
    consecutive_failures: int = 0
    total_failures: int = 0
    unassigned_nsds: Tuple[str, ...] = ()
    pools: Tuple[Pool, ...] = ()
    quotas: Tuple[QuotaRecord, ...] = ()
    nsd_capacities: Tuple[NsdCapacity, ...] = ()
    fs_capacities: Tuple[FilesystemCapacity, ...] = ()
    filesets: Tuple[Fileset, ...] = ()
    last_error: Optional[str] = None
    generation: int = 0

    @property
    def is_empty(self) -> bool:
        return self.refreshed_at is None

    def age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the last successful refresh."""
        if self.refreshed_at is None:
            return None
        return (time.time() if now is None else now) - self.refreshed_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'groups': [group.to_dict() for group in self.groups],
            'refreshed_at': self.refreshed_at,
            'stale': self.stale,
            'consecutive_failures': self.consecutive_failures,
            'total_failures': self.total_failures,
            'unassigned_nsds': list(self.unassigned_nsds),
            'pools': [pool.to_dict() for pool in self.pools],
            'filesystems': [fs.to_dict() for fs in self.fs_capacities],
            'last_error': self.last_error,
        }


EMPTY_SNAPSHOT = AggregateSnapshot()


class AggregationCache:
    """
    Holds the current AggregateSnapshot.

    There is exactly one writer (the refresh loop). ``current()`` takes no
    lock: publishing rebinds a single attribute to a new immutable snapshot,
    which is atomic for readers.
    """

    def __init__(self, stale_after_failures: int = DEFAULT_STALE_AFTER_FAILURES):
        """
        Initialize the cache

        Args:
            stale_after_failures: consecutive failed refreshes after which the
                snapshot is flagged stale
        """
        if stale_after_failures < 1:
            raise ValueError("stale_after_failures must be at least 1")
        self.stale_after_failures = stale_after_failures
        self.logger = logging.getLogger(__name__)
        self._snapshot: AggregateSnapshot = EMPTY_SNAPSHOT

    def current(self) -> AggregateSnapshot:
        return self._snapshot

    def publish(self, result: AggregationResult,
                quotas: Tuple[QuotaRecord, ...] = (),
                nsd_capacities: Tuple[NsdCapacity, ...] = (),
                fs_capacities: Tuple[FilesystemCapacity, ...] = (),
                filesets: Tuple[Fileset, ...] = ()) -> AggregateSnapshot:
        """Commit a successful refresh; clears the failure streak and the stale flag.

        Quotas, capacities and filesets are carried as collected, next to the
        computed groups and pools.
        """
        previous = self._snapshot
        snapshot = AggregateSnapshot(
            groups=tuple(result.groups),
            refreshed_at=result.computed_at,
            stale=False,
            consecutive_failures=0,
            total_failures=previous.total_failures,
            unassigned_nsds=tuple(result.unassigned),
            pools=tuple(result.pools),
            quotas=tuple(quotas),
            nsd_capacities=tuple(nsd_capacities),
            fs_capacities=tuple(fs_capacities),
            filesets=tuple(filesets),
            generation=previous.generation + 1,
        )
        self._snapshot = snapshot

        if previous.stale:
            self.logger.info(f"Refresh succeeded after {previous.consecutive_failures} failures, snapshot is live again")
        self.logger.debug(f"Published snapshot #{snapshot.generation}: {len(snapshot.groups)} groups, "
                          f"{len(snapshot.unassigned_nsds)} unassigned NSDs")
        return snapshot

    def record_failure(self, error: Any) -> AggregateSnapshot:
        """
        Count a failed refresh.

        The last good data stays in place; only the failure counters and the
        stale flag change.
        """
        previous = self._snapshot
        consecutive = previous.consecutive_failures + 1
        stale = consecutive >= self.stale_after_failures

        snapshot = replace(
            previous,
            stale=stale,
            consecutive_failures=consecutive,
            total_failures=previous.total_failures + 1,
            last_error=str(error),
        )
        self._snapshot = snapshot

        self.logger.warning(f"Refresh failed ({consecutive} in a row, {snapshot.total_failures} total): {error}")
        if stale and not previous.stale:
            self.logger.error(f"Snapshot marked stale after {consecutive} consecutive refresh failures")
        return snapshot
