"""Refresh loop orchestration.

The refresh loop is the only writer of the aggregation state: it drives the
data source, the NSD pool aggregator and the cache, and hands every
published snapshot to the writers.
"""

import logging
import threading
import time
from typing import Optional

from ..aggregation.pool_aggregator import NsdPoolAggregator
from ..cache.aggregate_cache import AggregateSnapshot, AggregationCache
from ..datasources.base import CollectionFailure, DataSource
from ..writer.base import Writer


class RefreshLoop:
    """Periodic refresh of the aggregation cache.

    ``refresh_now()`` may be called from any thread; a lock serialises it
    against the background loop so there is still only one writer at a time.
    Readers use ``cache.current()`` and never take that lock.
    """

    def __init__(self, datasource: DataSource, cache: AggregationCache,
                 writer: Optional[Writer] = None, aggregator: Optional[NsdPoolAggregator] = None,
                 interval: float = 1.0, max_iterations: int = 0):
        """Initialize the loop.

        Args:
            datasource: source of topology and I/O samples
            cache: the cache this loop publishes to
            writer: optional writer receiving every snapshot
            aggregator: rate aggregator, a fresh one by default
            interval: seconds between refresh starts
            max_iterations: stop after N refreshes, 0 for unlimited
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.datasource = datasource
        self.cache = cache
        self.writer = writer
        self.aggregator = aggregator or NsdPoolAggregator()
        self.interval = interval
        self.max_iterations = max_iterations
        self.logger = logging.getLogger(__name__)

        self.iterations = 0
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def refresh_now(self) -> AggregateSnapshot:
        """Run one refresh immediately and return the resulting snapshot.

        A failed refresh returns the previous data with updated failure
        counters; it never raises for collection problems.
        """
        with self._refresh_lock:
            return self._refresh()

    def _refresh(self) -> AggregateSnapshot:
        self.iterations += 1
        started = time.monotonic()

        try:
            collection = self.datasource.collect()
            result = self.aggregator.refresh(collection.topology, collection.samples, now=collection.collected_at)
        except CollectionFailure as e:
            snapshot = self.cache.record_failure(e)
        except Exception as e:
            self.logger.error(f"Unexpected refresh error: {e}", exc_info=True)
            snapshot = self.cache.record_failure(e)
        else:
            snapshot = self.cache.publish(
                result,
                quotas=tuple(collection.quotas),
                nsd_capacities=tuple(collection.nsd_capacities),
                fs_capacities=tuple(collection.fs_capacities),
                filesets=tuple(collection.filesets),
            )
            self.logger.debug(f"Refresh {self.iterations} took {time.monotonic() - started:.3f}s")

        self._write(snapshot)
        return snapshot

    def _write(self, snapshot: AggregateSnapshot) -> None:
        if self.writer is None:
            return
        try:
            if not self.writer.write(snapshot, self.iterations):
                self.logger.warning(f"Writer reported failure on iteration {self.iterations}")
        except Exception as e:
            self.logger.error(f"Writer error: {e}", exc_info=True)

    def run_forever(self) -> None:
        """Refresh on the configured interval until stopped.

        Returns when ``stop()`` is called, ``max_iterations`` is reached or a
        finite data source is exhausted.
        """
        self.logger.info(f"Starting refresh loop (interval: {self.interval}s, max_iterations: "
                         f"{self.max_iterations if self.max_iterations > 0 else 'unlimited'})")
        count = 0
        while not self._stop.is_set():
            deadline = time.monotonic() + self.interval
            self.refresh_now()
            count += 1

            if self.max_iterations > 0 and count >= self.max_iterations:
                self.logger.info(f"Reached maximum iterations ({self.max_iterations}) - exiting")
                break
            if self.datasource.exhausted():
                self.logger.info(f"Data source exhausted after {count} refreshes")
                break

            self._stop.wait(max(0.0, deadline - time.monotonic()))

        self.logger.info("Refresh loop stopped")

    def start(self) -> None:
        """Run the loop in a background daemon thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name='gpfs-refresh', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Ask the loop to stop and wait for it.

        An in-flight refresh is allowed to finish; the published snapshot is
        never left half-updated.

        Returns:
            True if the loop thread has ended
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self.logger.warning("Refresh loop did not stop within timeout")
                return False
            self._thread = None
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the loop thread ends; True if it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
