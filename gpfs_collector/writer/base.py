"""
Writer interface: consumers of published aggregation snapshots.
"""

from abc import ABC, abstractmethod

from ..cache.aggregate_cache import AggregateSnapshot


class Writer(ABC):
    """
    A destination for snapshots.

    The refresh loop calls ``write()`` after every refresh, successful or
    not, so a writer sees stale snapshots too and decides itself whether to
    publish them. Snapshots are shared with concurrent readers and must not
    be modified.
    """

    @abstractmethod
    def write(self, snapshot: AggregateSnapshot, loop_iteration: int = 1) -> bool:
        """
        Publish one snapshot.

        Args:
            snapshot: the snapshot the cache holds after this refresh
            loop_iteration: refresh counter of the loop

        Returns:
            False when the destination could not be updated
        """

    def close(self, timeout_seconds: int = 90, force_exit_on_timeout: bool = False) -> None:
        """Release resources at shutdown. Nothing to do by default."""
