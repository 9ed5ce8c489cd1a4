"""
Fan-out writer: hands each snapshot to the nmon feed and the Prometheus
writer in turn.
"""

import logging
from typing import Dict, List

from ..cache.aggregate_cache import AggregateSnapshot
from .base import Writer

LOG = logging.getLogger(__name__)


class MultiWriter(Writer):
    """
    Feeds every snapshot to all child writers, in order.

    One child failing (returning False or raising) does not keep the others
    from receiving the snapshot; failures are counted per child.
    """

    def __init__(self, writers: List[Writer]):
        self.writers = list(writers)
        self.failures: Dict[str, int] = {self._name(w): 0 for w in self.writers}
        LOG.info(f"Writing snapshots to {self}")

    @staticmethod
    def _name(writer: Writer) -> str:
        return type(writer).__name__

    def write(self, snapshot: AggregateSnapshot, loop_iteration: int = 1) -> bool:
        """
        Returns:
            False if any child writer failed on this snapshot
        """
        all_ok = True
        for child in self.writers:
            name = self._name(child)
            try:
                ok = child.write(snapshot, loop_iteration)
            except Exception as e:
                LOG.error(f"{name} raised on iteration {loop_iteration}: {e}", exc_info=True)
                ok = False
            if not ok:
                self.failures[name] += 1
                all_ok = False
        return all_ok

    def close(self, timeout_seconds: int = 90, force_exit_on_timeout: bool = False) -> None:
        for child in self.writers:
            try:
                child.close(timeout_seconds=timeout_seconds, force_exit_on_timeout=force_exit_on_timeout)
            except Exception as e:
                LOG.error(f"Closing {self._name(child)} failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        return f"MultiWriter({', '.join(self._name(w) for w in self.writers)})"

    __str__ = __repr__
