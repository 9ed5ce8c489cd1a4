"""Command line entry point for the GPFS collector."""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional, TextIO

from .aggregation.pool_aggregator import resolve_membership
from .aggregation.views import find_pool
from .cache.aggregate_cache import AggregationCache
from .config import Settings
from .core.collector import RefreshLoop
from .core.config import CollectorConfig
from .core.logging_config import LoggingConfigurator
from .core.writer_config import WriterConfig
from .datasources.base import CollectionFailure, DataSource
from .datasources.command import CommandDataSource
from .datasources.device_cache import format_device_cache, load_local_devices
from .datasources.replay import ReplayDataSource
from .parser.output_parser import ParseSummary, parse_output
from .schema.columns import EntityType
from .writer.factory import WriterFactory
from .writer.nmon_writer import DEFAULT_RUNTIME_DIR, DEVICES_FILE, atomic_write, format_device_groups
from .writer.prometheus_writer import PrometheusWriter

ENTITY_CHOICES = [t.value for t in EntityType if t is not EntityType.UNKNOWN]


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    source_group = parser.add_argument_group('Data Source')
    source_group.add_argument('--config', type=str, default=None,
                              help='YAML or JSON settings file')
    source_group.add_argument('--replay-dir', type=str, default=None,
                              help='Read recorded -Y outputs from this directory instead of running commands')
    source_group.add_argument('--bin-dir', type=str, default=None,
                              help='Directory of the mm* commands (default: /usr/lpp/mmfs/bin)')
    source_group.add_argument('--filesystem', '-f', dest='filesystems', action='append', default=None,
                              help='Restrict to this file system (repeatable, default: all)')
    source_group.add_argument('--all-nodes', dest='local_only', action='store_const', const=False, default=None,
                              help='Use all NSDs, not only those served by this node')
    source_group.add_argument('--command-timeout', type=float, default=None,
                              help='Seconds before a command is abandoned (default: 30)')
    source_group.add_argument('--device-cache', type=str, default=None,
                              help='Local NSD device cache file (default: <runtime-dir>/local-nsd-devices, '
                                   'empty to always run mmlsnsd -X)')

    debug_group = parser.add_argument_group('Debugging')
    debug_group.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                             default=None, help='Set logging level (default: WARNING, INFO for run)')
    debug_group.add_argument('--logfile', type=str, default=None,
                             help='Path to log file (default: stderr only)')


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""

    parser = argparse.ArgumentParser(
        prog='gpfs-collector',
        description='GPFS -Y output parser and NSD pool I/O collector',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Decode recorded output
  mmlsdisk fs1 -Y | gpfs-collector parse --filesystem fs1

  # Feed nmon with per-pool I/O rates every second
  gpfs-collector run --output nmon --runtime-dir /run/gpfs-collector

  # nmon device groups for this node
  gpfs-collector nmon-groups > /run/gpfs-collector/nmon-devices

  # Rebuild the cached local NSD devices after replacing a disk
  gpfs-collector cache nsds --force

  # Cluster manager node
  gpfs-collector list manager cluster
        """
    )
    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    parse_parser = subparsers.add_parser('parse', help='Parse -Y output and print the decoded entities')
    parse_parser.add_argument('file', nargs='?', default='-', help='Input file (default: stdin)')
    parse_parser.add_argument('--filesystem', type=str, default=None,
                              help='File system the output belongs to (mmdf, mmlsdisk)')
    parse_parser.add_argument('--type', dest='entity_type', choices=ENTITY_CHOICES, default=None,
                              help='Only print this entity type; exit 1 only on its failures')
    parse_parser.add_argument('--strict', action='store_true',
                              help='Exit 1 on any failed row, whatever its type')
    parse_parser.add_argument('--format', choices=['text', 'json'], default='text')
    parse_parser.add_argument('--include-raw', action='store_true',
                              help='Include undeclared columns in the output')
    parse_parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default=None)

    run_parser = subparsers.add_parser('run', help='Run the refresh loop and feed nmon and/or Prometheus')
    _add_source_arguments(run_parser)
    output_group = run_parser.add_argument_group('Output Configuration')
    output_group.add_argument('--output', choices=['nmon', 'prometheus', 'both'], default=None,
                              help='Output format (default: nmon)')
    output_group.add_argument('--runtime-dir', type=str, default=None,
                              help='Directory for the nmon feed files (default: /run/gpfs-collector)')
    output_group.add_argument('--nmon-file', type=str, default=None,
                              help='Rate feed path (default: <runtime-dir>/nmon-groups)')
    output_group.add_argument('--prometheus-port', type=int, default=None,
                              help='Prometheus metrics server port (default: 9303)')
    behavior_group = run_parser.add_argument_group('Refresh Behavior')
    behavior_group.add_argument('--interval', type=float, default=None,
                                help='Seconds between refreshes (default: 1.0)')
    behavior_group.add_argument('--stale-after', type=int, default=None,
                                help='Consecutive failed refreshes before the data is marked stale (default: 3)')
    behavior_group.add_argument('--include-quotas', action='store_const', const=True, default=None,
                                help='Also collect mmrepquota for the Prometheus quota metrics')
    behavior_group.add_argument('--include-filesets', action='store_const', const=True, default=None,
                                help='Also collect mmlsfileset for the Prometheus fileset metrics')
    behavior_group.add_argument('--topology-interval', type=float, default=None,
                                help='Seconds between topology reads, 0 for every refresh (default: 60)')
    behavior_group.add_argument('--force', action='store_const', const=True, default=None,
                                help='Rebuild the local NSD device cache at startup')
    behavior_group.add_argument('--max-iterations', type=int, default=None,
                                help='Exit after N refreshes (0=unlimited)')

    nmon_parser = subparsers.add_parser('nmon-groups', help='Print nmon device groups (<fs>-<pool> dev...)')
    _add_source_arguments(nmon_parser)
    nmon_parser.add_argument('--write', dest='write_path', type=str, default=None,
                             help='Write the groups atomically to this file instead of stdout')

    percent_parser = subparsers.add_parser('pool-percent', help='Print the used percentage of a pool')
    _add_source_arguments(percent_parser)
    percent_parser.add_argument('fs', help='File system name')
    percent_parser.add_argument('pool', help='Pool name')

    cache_parser = subparsers.add_parser('cache', help='Build the cached local NSD devices or nmon device groups')
    cache_subparsers = cache_parser.add_subparsers(dest='what', metavar='WHAT')
    cache_subparsers.required = True
    for name, help_text in (('nsds', 'Cache the local NSD to block device map'),
                            ('nmon', 'Cache the nmon device groups')):
        leaf = cache_subparsers.add_parser(name, help=help_text)
        _add_source_arguments(leaf)
        leaf.add_argument('--runtime-dir', type=str, default=None,
                          help='Directory of the cache files (default: /run/gpfs-collector)')
        leaf.add_argument('--force', action='store_const', const=True, default=None,
                          help='Rebuild even if the cache file exists')

    list_parser = subparsers.add_parser('list', help='List cluster objects')
    list_subparsers = list_parser.add_subparsers(dest='what', metavar='WHAT')
    list_subparsers.required = True
    fs_parser = list_subparsers.add_parser('filesystems', aliases=['fs'], help='File system names')
    _add_source_arguments(fs_parser)
    manager_parser = list_subparsers.add_parser('manager', help='Manager nodes (mmlsmgr)')
    manager_subparsers = manager_parser.add_subparsers(dest='manager', metavar='WHICH')
    manager_subparsers.required = True
    for name, help_text in (('cluster', 'Cluster manager node'),
                            ('filesystems', 'File system manager node per file system')):
        leaf = manager_subparsers.add_parser(name, help=help_text)
        _add_source_arguments(leaf)

    return parser


def create_datasource(config: CollectorConfig) -> DataSource:
    if config.source == 'replay':
        return ReplayDataSource(config.to_dict())
    return CommandDataSource(config.to_dict())


def _setup(args, default_level: str):
    """Settings, collector config and logging shared by all source-backed commands."""
    settings = Settings(config_file=getattr(args, 'config', None))
    config = CollectorConfig.from_args(args, settings)
    level = getattr(args, 'log_level', None) or settings.get('log_level') or default_level
    LoggingConfigurator.setup_logging(log_level=level, log_file=config.logfile)
    return settings, config


def _open_input(path: str) -> TextIO:
    if path == '-':
        return sys.stdin
    return open(path, 'r', encoding='utf-8', errors='replace')


def cmd_parse(args, out: TextIO, err: TextIO) -> int:
    LoggingConfigurator.setup_logging(log_level=args.log_level or 'WARNING')
    wanted = EntityType(args.entity_type) if args.entity_type else None
    summary = ParseSummary()

    try:
        stream = _open_input(args.file)
    except OSError as e:
        print(f"error: {e}", file=err)
        return 1

    try:
        for item in summary.track(parse_output(stream, args.filesystem)):
            if item.is_unknown:
                continue
            if wanted is not None and item.entity_type is not wanted and item.entity_type is not EntityType.UNKNOWN:
                continue
            if item.is_error:
                print(f"error: {item.entity_type.value}: {item.value}", file=err)
                continue

            data = item.value.to_dict(include_raw=args.include_raw)
            if args.format == 'json':
                print(json.dumps({'type': item.entity_type.value, 'line': item.line_number, **data}, default=str), file=out)
            else:
                fields = ' '.join(f"{k}={v}" for k, v in data.items())
                print(f"{item.entity_type.value} {fields}", file=out)
    finally:
        if stream is not sys.stdin:
            stream.close()

    for tag, count in summary.unknown.items():
        print(f"note: {count} rows of unknown section {tag} skipped", file=err)

    if args.strict or wanted is None:
        return 1 if summary.failed() else 0
    return 1 if summary.failed(wanted) or summary.failed(EntityType.UNKNOWN) else 0


def cmd_run(args) -> int:
    settings, config = _setup(args, 'INFO')
    writer_config = WriterConfig.from_args(args, settings)

    logging.info("=== GPFS Collector Startup ===")
    logging.info(f"Data Source: {'replay of ' + config.replay_dir if config.source == 'replay' else 'mm* commands'}")
    if config.filesystems:
        logging.info(f"File Systems: {', '.join(config.filesystems)}")
    logging.info(f"Local NSDs Only: {config.local_only}")
    logging.info(f"Output Mode: {writer_config.output_format}")
    logging.info(f"Refresh Interval: {config.interval}s, stale after {config.stale_after_failures} failures")
    logging.info(f"Topology Interval: {config.topology_interval}s, device cache: {config.device_cache or 'off'}")
    if writer_config.nmon_enabled:
        logging.info(f"Runtime Directory: {writer_config.runtime_dir}")
    if writer_config.prometheus_enabled:
        logging.info(f"Prometheus Port: {writer_config.prometheus_port}")
    logging.info("=== Configuration Complete ===")

    datasource = create_datasource(config)
    if not datasource.initialize():
        logging.error("Failed to initialize data source")
        return 1

    writer = WriterFactory.create_writer_from_config(writer_config)
    for candidate in getattr(writer, 'writers', [writer]):
        if isinstance(candidate, PrometheusWriter):
            candidate.start_server()

    loop = RefreshLoop(
        datasource,
        AggregationCache(stale_after_failures=config.stale_after_failures),
        writer=writer,
        interval=config.interval,
        max_iterations=config.max_iterations,
    )
    try:
        loop.run_forever()
    except KeyboardInterrupt:
        logging.info("Received interrupt, shutting down...")
    finally:
        writer.close()
        datasource.cleanup()
    return 0


def _collect_once(datasource: DataSource):
    """Initialize a source and run one collection."""
    if not datasource.initialize():
        raise CollectionFailure("data source failed to initialize")
    try:
        return datasource.collect()
    finally:
        datasource.cleanup()


def _device_groups(datasource: DataSource) -> str:
    collection = _collect_once(datasource)
    membership = resolve_membership(collection.topology.nsds, collection.topology.disks)
    return format_device_groups(membership.devices)


def cmd_nmon_groups(args, out: TextIO) -> int:
    _, config = _setup(args, 'WARNING')
    text = _device_groups(create_datasource(config))

    if args.write_path:
        atomic_write(args.write_path, text)
    else:
        out.write(text)
    return 0


def cmd_cache(args, out: TextIO, err: TextIO) -> int:
    _, config = _setup(args, 'WARNING')
    datasource = create_datasource(config)

    if args.what == 'nsds':
        if not config.device_cache:
            print("error: the device cache is turned off", file=err)
            return 1
        nsds = load_local_devices(config.device_cache, datasource, force=config.force_device_cache, strict=True)
        out.write(format_device_cache(nsds))
        return 0

    runtime_dir = args.runtime_dir or DEFAULT_RUNTIME_DIR
    path = os.path.join(runtime_dir, DEVICES_FILE)
    if config.force_device_cache or not os.path.exists(path):
        text = _device_groups(datasource)
        os.makedirs(runtime_dir, exist_ok=True)
        atomic_write(path, text)
        logging.info(f"Wrote nmon device groups to {path}")
    else:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    out.write(text)
    return 0


def cmd_pool_percent(args, out: TextIO, err: TextIO) -> int:
    _, config = _setup(args, 'WARNING')
    pools = create_datasource(config).filesystem_pools(args.fs)
    capacity = find_pool(pools, args.fs, args.pool)
    if capacity is None:
        print(f"error: no pool {args.pool} in file system {args.fs}", file=err)
        return 1
    print(capacity.used_percent, file=out)
    return 0


def cmd_list(args, out: TextIO, err: TextIO) -> int:
    _, config = _setup(args, 'WARNING')
    datasource = create_datasource(config)

    if args.what in ('filesystems', 'fs'):
        if not datasource.initialize():
            return 1
        for name in datasource.list_filesystems():
            print(name, file=out)
        return 0

    managers = datasource.managers()
    if args.manager == 'cluster':
        if managers.cluster is None:
            print("error: mmlsmgr reported no cluster manager", file=err)
            return 1
        print(managers.cluster.name, file=out)
    else:
        for manager in managers.filesystems:
            print(f"{manager.filesystem} {manager.name}", file=out)
    return 0


def run_cli(argv: Optional[List[str]] = None, out: Optional[TextIO] = None,
            err: Optional[TextIO] = None) -> int:
    """Run one CLI invocation and return its exit code."""
    out = out or sys.stdout
    err = err or sys.stderr

    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == 'parse':
            return cmd_parse(args, out, err)
        if args.command == 'run':
            return cmd_run(args)
        if args.command == 'nmon-groups':
            return cmd_nmon_groups(args, out)
        if args.command == 'pool-percent':
            return cmd_pool_percent(args, out, err)
        if args.command == 'cache':
            return cmd_cache(args, out, err)
        if args.command == 'list':
            return cmd_list(args, out, err)
    except CollectionFailure as e:
        print(f"error: {e}", file=err)
        return 1
    except (OSError, ValueError) as e:
        # setup failures: config file, feed directory, port, bad option values
        print(f"error: {e}", file=err)
        return 1

    parser.error(f"unknown command {args.command}")
    return 2


def main():
    """Main entry point."""
    sys.exit(run_cli())


if __name__ == '__main__':
    main()
