"""Core collector package initialization."""

from .collector import RefreshLoop
from .config import CollectorConfig
from .writer_config import WriterConfig

__all__ = ['RefreshLoop', 'CollectorConfig', 'WriterConfig']
