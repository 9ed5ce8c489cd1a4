"""Core configuration classes for the collector."""

import os
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

DEFAULT_INTERVAL = 1.0
DEFAULT_STALE_AFTER_FAILURES = 3
DEFAULT_COMMAND_TIMEOUT = 30.0
DEFAULT_TOPOLOGY_INTERVAL = 60.0
DEFAULT_RUNTIME_DIR = '/run/gpfs-collector'
DEVICE_CACHE_NAME = 'local-nsd-devices'


@dataclass
class CollectorConfig:
    """Main configuration for the collector system."""

    # Data source configuration
    source: str = 'command'  # 'command' or 'replay'
    replay_dir: Optional[str] = None

    # Command source configuration
    bin_dir: Optional[str] = None
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    filesystems: List[str] = field(default_factory=list)
    local_only: bool = True
    include_capacity: bool = True
    include_quotas: bool = False
    include_filesets: bool = False
    sysfs_root: Optional[str] = None
    topology_interval: float = DEFAULT_TOPOLOGY_INTERVAL  # seconds between topology reads, 0 = every refresh
    device_cache: Optional[str] = None  # local NSD device cache file, None = always run mmlsnsd -X
    force_device_cache: bool = False

    # Refresh behavior
    interval: float = DEFAULT_INTERVAL  # seconds between refreshes
    stale_after_failures: int = DEFAULT_STALE_AFTER_FAILURES

    # Debugging
    log_level: str = 'INFO'
    logfile: Optional[str] = None

    # Collection control
    max_iterations: int = 0  # 0 = unlimited, >0 = exit after N iterations

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.source not in ('command', 'replay'):
            raise ValueError(f"source must be 'command' or 'replay', got {self.source!r}")
        if self.source == 'replay' and not self.replay_dir:
            raise ValueError("replay_dir required for replay mode")

        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        if self.stale_after_failures < 1:
            raise ValueError(f"stale_after_failures must be at least 1, got {self.stale_after_failures}")
        if self.command_timeout <= 0:
            raise ValueError(f"command_timeout must be positive, got {self.command_timeout}")
        if self.topology_interval < 0:
            raise ValueError(f"topology_interval cannot be negative, got {self.topology_interval}")
        if self.max_iterations < 0:
            raise ValueError("max_iterations cannot be negative")

    @classmethod
    def from_args(cls, args, settings=None) -> 'CollectorConfig':
        """Create configuration from command line arguments.

        Values given on the command line win over the settings file and
        environment (``config.Settings``), which win over the defaults.
        """
        def pick(arg_name: str, setting_key: str, default):
            value = getattr(args, arg_name, None)
            if value is not None:
                return value
            if settings is not None:
                value = settings.get(setting_key)
                if value is not None:
                    return value
            return default

        replay_dir = pick('replay_dir', 'replay_dir', None)
        filesystems = pick('filesystems', 'filesystems', [])
        if isinstance(filesystems, str):
            filesystems = [fs.strip() for fs in filesystems.split(',') if fs.strip()]

        # an empty device cache path turns the cache off
        device_cache = pick('device_cache', 'device_cache', None)
        if device_cache is None:
            runtime_dir = pick('runtime_dir', 'runtime_dir', DEFAULT_RUNTIME_DIR)
            device_cache = os.path.join(runtime_dir, DEVICE_CACHE_NAME)

        return cls(
            source='replay' if replay_dir else 'command',
            replay_dir=replay_dir,
            bin_dir=pick('bin_dir', 'bin_dir', None),
            command_timeout=float(pick('command_timeout', 'command_timeout', DEFAULT_COMMAND_TIMEOUT)),
            filesystems=list(filesystems),
            local_only=bool(pick('local_only', 'local_only', True)),
            include_capacity=bool(pick('include_capacity', 'include_capacity', True)),
            include_quotas=bool(pick('include_quotas', 'include_quotas', False)),
            include_filesets=bool(pick('include_filesets', 'include_filesets', False)),
            sysfs_root=pick('sysfs_root', 'sysfs_root', None),
            topology_interval=float(pick('topology_interval', 'topology_interval', DEFAULT_TOPOLOGY_INTERVAL)),
            device_cache=device_cache or None,
            force_device_cache=bool(pick('force', 'force_device_cache', False)),
            interval=float(pick('interval', 'interval', DEFAULT_INTERVAL)),
            stale_after_failures=int(pick('stale_after', 'stale_after_failures', DEFAULT_STALE_AFTER_FAILURES)),
            log_level=str(pick('log_level', 'log_level', 'INFO')),
            logfile=pick('logfile', 'logfile', None),
            max_iterations=int(pick('max_iterations', 'max_iterations', 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for passing to DataSources."""
        return {
            'source': self.source,
            'replay_dir': self.replay_dir,
            'bin_dir': self.bin_dir,
            'command_timeout': self.command_timeout,
            'filesystems': list(self.filesystems),
            'local_only': self.local_only,
            'include_capacity': self.include_capacity,
            'include_quotas': self.include_quotas,
            'include_filesets': self.include_filesets,
            'sysfs_root': self.sysfs_root,
            'topology_interval': self.topology_interval,
            'device_cache': self.device_cache,
            'force_device_cache': self.force_device_cache,
            'interval': self.interval,
            'stale_after_failures': self.stale_after_failures,
            'logfile': self.logfile,
            'max_iterations': self.max_iterations,
        }
