"""NSD-to-pool grouping, I/O rates and read-only views."""

from .pool_aggregator import (
    AggregationResult, Membership, NsdPoolAggregator, NsdRate, Topology,
    compute_rate, count_pool_disks, resolve_membership,
)
from .views import PoolCapacity, PoolIoRate, QuotaStatus, pool_capacity, pool_io_rates, quota_status

__all__ = ['AggregationResult', 'Membership', 'NsdPoolAggregator', 'NsdRate', 'Topology',
           'compute_rate', 'count_pool_disks', 'resolve_membership',
           'PoolCapacity', 'PoolIoRate', 'QuotaStatus', 'pool_capacity', 'pool_io_rates', 'quota_status']
