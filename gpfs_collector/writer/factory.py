"""
Writer factory for the GPFS collector.
"""

import logging

from .base import Writer
from .nmon_writer import NmonWriter
from .prometheus_writer import PrometheusWriter
from .multi_writer import MultiWriter

# Initialize logger
LOG = logging.getLogger(__name__)

class WriterFactory:
    """
    Factory for creating writer instances based on configuration.
    """

    @staticmethod
    def create_writer_from_config(writer_config) -> Writer:
        """
        Create a writer based on WriterConfig object.

        The nmon writer's feed directories are created here, so a feed that
        cannot be set up fails before the refresh loop starts.

        Args:
            writer_config: WriterConfig instance with writer settings

        Returns:
            Appropriate Writer instance

        Raises:
            OSError: if the nmon feed directory cannot be created
            ValueError: for an unknown output format
        """
        output_choice = writer_config.output_format
        config = writer_config.to_dict()

        if output_choice == 'nmon':
            LOG.info(f"Creating nmon writer under {writer_config.runtime_dir}")
            writer = NmonWriter(config)
            writer.prepare()
            return writer

        elif output_choice == 'prometheus':
            LOG.info(f"Creating Prometheus writer on port {writer_config.prometheus_port}")
            return PrometheusWriter(config)

        elif output_choice == 'both':
            nmon_writer = NmonWriter(config)
            nmon_writer.prepare()
            prometheus_writer = PrometheusWriter(config)
            LOG.info("Creating nmon and Prometheus writers")
            return MultiWriter([nmon_writer, prometheus_writer])

        else:
            LOG.error(f"Unknown output format: {output_choice}")
            raise ValueError(f"Unsupported output format: {output_choice}")
