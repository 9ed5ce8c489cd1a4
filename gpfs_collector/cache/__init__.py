"""Published aggregation snapshots."""

from .aggregate_cache import AggregateSnapshot, AggregationCache, EMPTY_SNAPSHOT

__all__ = ['AggregateSnapshot', 'AggregationCache', 'EMPTY_SNAPSHOT']
