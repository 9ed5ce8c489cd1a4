"""Writer module for the GPFS collector.

Provides writer implementations for the nmon feed and Prometheus.
"""

from .base import Writer
from .factory import WriterFactory
from .nmon_writer import NmonWriter
from .prometheus_writer import PrometheusWriter
from .multi_writer import MultiWriter

__all__ = ['Writer', 'WriterFactory', 'NmonWriter', 'PrometheusWriter', 'MultiWriter']
