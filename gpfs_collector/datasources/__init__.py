"""DataSource implementations for different collection modes."""

from .base import DataSource, Collection, CollectionBuilder, CollectionFailure, Managers
from .command import CommandDataSource, run_command
from .device_cache import DEVICE_CACHE_NAME, load_local_devices
from .replay import ReplayDataSource

__all__ = ['DataSource', 'Collection', 'CollectionBuilder', 'CollectionFailure', 'Managers',
           'CommandDataSource', 'run_command', 'DEVICE_CACHE_NAME', 'load_local_devices',
           'ReplayDataSource']
