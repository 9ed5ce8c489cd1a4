"""GPFS -Y output parser and NSD pool I/O collector."""

__version__ = '0.1.0'
