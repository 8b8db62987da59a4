"""
Retention CLI for the retention daemon.

This module provides the command-line interface for running cleanups,
running the scheduler as a daemon, and inspecting table health.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from ..monitoring.retention_metrics import RetentionMetrics
from .retention_config import RetentionConfigManager, config_to_dict, validate_config
from .retention_errors import ConfigurationError
from .retention_logging import setup_logging
from .retention_scheduler import create_retention_scheduler
from .sqlite_store import create_sqlite_store

logger = logging.getLogger(__name__)


async def run_cleanup(args) -> int:
    """Run one manual cleanup and print the result."""
    config = validate_config(RetentionConfigManager(args.config).config)
    scheduler = create_retention_scheduler(config, create_sqlite_store(config.database))

    result = await scheduler.trigger()

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


async def run_daemon(args) -> int:
    """Run the scheduler until SIGINT/SIGTERM."""
    config = RetentionConfigManager(args.config).config
    metrics = RetentionMetrics()
    scheduler = create_retention_scheduler(config, create_sqlite_store(config.database), metrics)

    await scheduler.start()

    if args.metrics_port:
        metrics.serve(args.metrics_port)

    stop_event = asyncio.Event()
    scheduler.install_signal_handlers(stop_event)
    await stop_event.wait()

    await scheduler.stop()
    stats = scheduler.get_stats()
    logger.info(f"Runs: {stats.runs_attempted} attempted, "
                f"{stats.runs_succeeded} succeeded, {stats.runs_failed} failed")
    return 0


async def show_health(args) -> int:
    """Show aggregate statistics of the retained table."""
    config = validate_config(RetentionConfigManager(args.config).config)
    scheduler = create_retention_scheduler(config, create_sqlite_store(config.database))

    snapshot = await scheduler.health_check()

    if not snapshot.success:
        print(f"Health check failed: {snapshot.error}")
        return 1

    print(f"Table Health: {config.table}")
    print("=" * 40)
    print(f"Total rows: {snapshot.total_rows:,}")
    print(f"Expired rows (before {snapshot.cutoff.date().isoformat()}): {snapshot.expired_rows:,}")
    print(f"Oldest timestamp: {snapshot.oldest or 'Unknown'}")
    print(f"Newest timestamp: {snapshot.newest or 'Unknown'}")
    return 0


def show_config(args) -> int:
    """Show the effective configuration."""
    manager = RetentionConfigManager(args.config)
    print(yaml.safe_dump(config_to_dict(manager.config), default_flow_style=False, sort_keys=False))

    try:
        validate_config(manager.config)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Retention Daemon CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one cleanup now
  retentiond --config configs/retention.yaml run

  # Run the daily scheduler until interrupted
  retentiond --config configs/retention.yaml daemon --metrics-port 9108

  # Show table health
  retentiond --config configs/retention.yaml health
        """
    )

    # Global arguments
    parser.add_argument('--config', default='configs/retention.yaml',
                        help='Path to retention configuration file')
    parser.add_argument('--log-file', default='logs/retention/cleanup.log',
                        help='Log file path (empty to disable)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('run', help='Run one cleanup now')

    daemon_parser = subparsers.add_parser('daemon', help='Run the recurring scheduler')
    daemon_parser.add_argument('--metrics-port', type=int, default=0,
                               help='Expose Prometheus metrics on this port')

    subparsers.add_parser('health', help='Show table health')
    subparsers.add_parser('config', help='Show effective configuration')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.log_file or None)
    load_dotenv()

    try:
        if args.command == 'run':
            return asyncio.run(run_cleanup(args))
        elif args.command == 'daemon':
            return asyncio.run(run_daemon(args))
        elif args.command == 'health':
            return asyncio.run(show_health(args))
        elif args.command == 'config':
            return show_config(args)
        else:
            print(f"Unknown command: {args.command}")
            return 1

    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
