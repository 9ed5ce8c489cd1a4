"""Writer configuration abstraction.

Separates writer-specific configuration from main collector config.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any

OUTPUT_FORMATS = ('nmon', 'prometheus', 'both')


@dataclass
class WriterConfig:
    """Configuration specific to output writers."""

    # General output configuration
    output_format: str = 'nmon'  # 'nmon', 'prometheus', 'both'

    # nmon feed configuration
    runtime_dir: str = '/run/gpfs-collector'
    nmon_rates_file: Optional[str] = None
    nmon_devices_file: Optional[str] = None
    skip_when_stale: bool = True

    # Prometheus-specific configuration (only populated if needed)
    prometheus_port: int = 9303
    export_when_stale: bool = True

    def __post_init__(self):
        """Validate writer configuration after initialization."""
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"output_format must be one of {list(OUTPUT_FORMATS)}, got {self.output_format!r}")
        if self.output_format in ('prometheus', 'both') and not 0 <= self.prometheus_port <= 65535:
            raise ValueError(f"prometheus_port out of range: {self.prometheus_port}")

    @property
    def nmon_enabled(self) -> bool:
        return self.output_format in ('nmon', 'both')

    @property
    def prometheus_enabled(self) -> bool:
        return self.output_format in ('prometheus', 'both')

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for writer initialization."""
        config: Dict[str, Any] = {
            'output_format': self.output_format,
            'runtime_dir': self.runtime_dir,
        }

        # Only include nmon config if the nmon feed is enabled
        if self.nmon_enabled:
            config.update({
                'nmon_rates_file': self.nmon_rates_file,
                'nmon_devices_file': self.nmon_devices_file,
                'skip_when_stale': self.skip_when_stale,
            })

        # Only include Prometheus config if Prometheus output is enabled
        if self.prometheus_enabled:
            config.update({
                'prometheus_port': self.prometheus_port,
                'export_when_stale': self.export_when_stale,
            })

        return config

    @classmethod
    def from_args(cls, args, settings=None) -> 'WriterConfig':
        """Create WriterConfig from command line arguments.

        Command line values win over settings, settings over defaults.

        Args:
            args: Parsed command line arguments
            settings: optional config.Settings instance

        Returns:
            WriterConfig with writer-relevant settings
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

        runtime_dir = pick('runtime_dir', 'runtime_dir', cls.runtime_dir)
        return cls(
            output_format=pick('output', 'output', cls.output_format),
            runtime_dir=runtime_dir,
            nmon_rates_file=pick('nmon_file', 'nmon_rates_file', None),
            nmon_devices_file=pick('nmon_devices_file', 'nmon_devices_file', None),
            skip_when_stale=bool(pick('skip_when_stale', 'skip_when_stale', True)),
            prometheus_port=int(pick('prometheus_port', 'prometheus_port', cls.prometheus_port)),
            export_when_stale=bool(pick('export_when_stale', 'export_when_stale', True)),
        )
