"""Centralized logging configuration for the collector."""

import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


class LoggingConfigurator:
    """Handles all logging setup independently of other configuration."""

    @staticmethod
    def setup_logging(log_level: str = 'INFO', log_file: Optional[str] = None) -> None:
        """Set up logging configuration.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional path to log file. If None, logs to stderr only.

        Raises:
            ValueError: for an unknown level name
        """
        level_name = log_level.upper()
        if level_name not in LEVELS:
            raise ValueError(f"log level must be one of {list(LEVELS)}, got {log_level!r}")
        level = getattr(logging, level_name)

        handlers = [logging.StreamHandler()]
        if log_file:
            # Ensure directory exists
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))

        logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
