"""
Configuration management for the GPFS collector.
"""

import os
import yaml
import json
from typing import Any, Dict, Optional
import logging

# Initialize logger
LOG = logging.getLogger(__name__)

# environment variable -> (settings key, converter)
ENV_SETTINGS = {
    'GPFS_COLLECTOR_INTERVAL': ('interval', float),
    'GPFS_COLLECTOR_RUNTIME_DIR': ('runtime_dir', str),
    'GPFS_COLLECTOR_PROMETHEUS_PORT': ('prometheus_port', int),
    'GPFS_COLLECTOR_LOG_LEVEL': ('log_level', str),
    'GPFS_COLLECTOR_OUTPUT': ('output', str),
    'GPFS_COLLECTOR_STALE_AFTER': ('stale_after_failures', int),
    'GPFS_COLLECTOR_BIN_DIR': ('bin_dir', str),
    'GPFS_COLLECTOR_FILESYSTEMS': ('filesystems', str),
    'GPFS_COLLECTOR_DEVICE_CACHE': ('device_cache', str),
}

KNOWN_KEYS = {key for key, _ in ENV_SETTINGS.values()} | {
    'replay_dir', 'command_timeout', 'local_only', 'include_capacity', 'include_quotas',
    'sysfs_root', 'logfile', 'max_iterations', 'nmon_rates_file', 'nmon_devices_file',
    'skip_when_stale', 'export_when_stale', 'include_filesets', 'topology_interval',
    'force_device_cache',
}


class Settings:
    """
    Configuration settings for the GPFS collector.
    Supports loading from a YAML or JSON file, then environment variables.
    """

    def __init__(self, config_file: Optional[str] = None, from_env: bool = True,
                 environ: Optional[Dict[str, str]] = None):
        """
        Initialize settings from a config file and environment variables.

        Args:
            config_file: Path to YAML or JSON configuration file
            from_env: Whether to load settings from environment variables
            environ: environment to read instead of os.environ

        Raises:
            ValueError: if the config file cannot be parsed or an environment
                value has the wrong type
        """
        self.values: Dict[str, Any] = {}

        # Load configuration in order of precedence
        if config_file:
            self._load_from_file(config_file)

        if from_env:
            self._load_from_env(os.environ if environ is None else environ)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def _load_from_file(self, config_file: str) -> None:
        """Load settings from a YAML or JSON file."""
        if not os.path.exists(config_file):
            LOG.warning(f"Config file not found: {config_file}")
            return

        lowered = config_file.lower()
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                if lowered.endswith('.yaml') or lowered.endswith('.yml'):
                    config = yaml.safe_load(f)
                elif lowered.endswith('.json'):
                    config = json.load(f)
                else:
                    LOG.warning(f"Unsupported config file format: {config_file}")
                    return
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to parse config file {config_file}: {e}")

        if config is None:
            config = {}
        if not isinstance(config, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")

        for key, value in config.items():
            if key not in KNOWN_KEYS:
                LOG.warning(f"Ignoring unknown setting '{key}' in {config_file}")
                continue
            self.values[key] = value

        LOG.info(f"Loaded configuration from {config_file}")

    def _load_from_env(self, environ) -> None:
        """Load settings from environment variables."""
        for name, (key, convert) in ENV_SETTINGS.items():
            raw = environ.get(name)
            if raw is None or raw == '':
                continue
            try:
                self.values[key] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {name}: {raw!r}")
