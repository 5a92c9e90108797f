"""CLI entry point for possync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .context import TenantContext
from .session import SyncSession, run_session


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _tenant(args: argparse.Namespace, config: Config) -> TenantContext:
    tenant_id = getattr(args, "tenant", None) or config.session.tenant_id
    user_id = getattr(args, "user", None) or config.session.user_id
    return TenantContext(tenant_id=tenant_id, user_id=user_id)


async def cmd_run(args: argparse.Namespace) -> int:
    """Run a tenant sync session until interrupted."""
    config = load_config(args.config)
    try:
        ctx = _tenant(args, config)
    except ValueError as e:
        print(f"Error: {e} (use --tenant or session.tenant_id)", file=sys.stderr)
        return 1

    print(f"Starting possync node: {config.node.name}")
    print(f"Restaurant: {ctx.tenant_id}")
    print(f"Remote: {config.remote.url}")
    if config.realtime.enabled:
        print(f"Realtime: {config.realtime.broker}:{config.realtime.port}")
    else:
        print("Realtime: disabled")
    print(f"Sync interval: {config.sync.interval_minutes} min")

    try:
        await run_session(config, ctx)
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one push cycle and print the result."""
    config = load_config(args.config)
    try:
        ctx = _tenant(args, config)
    except ValueError as e:
        print(f"Error: {e} (use --tenant or session.tenant_id)", file=sys.stderr)
        return 1

    config.realtime.enabled = False
    if args.no_pull:
        config.sync.pull_after_push = False
    session = SyncSession(config)
    session.open()
    try:
        result = await session.synchronizer.sync_cycle(ctx)
    finally:
        await session.close()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif result.offline:
        print("Offline: nothing pushed")
    else:
        print(f"Pushed:   {result.pushed}")
        print(f"Failed:   {result.failed}")
        print(f"Dropped:  {result.pruned}")
        print(f"Deferred: {result.deferred}")

    if result.offline:
        return 2
    return 1 if result.has_failures else 0


async def cmd_pull(args: argparse.Namespace) -> int:
    """Pull all tenant data from the remote store."""
    config = load_config(args.config)
    try:
        ctx = _tenant(args, config)
    except ValueError as e:
        print(f"Error: {e} (use --tenant or session.tenant_id)", file=sys.stderr)
        return 1

    config.realtime.enabled = False
    session = SyncSession(config)
    session.open()
    try:
        result = await session.puller.pull_all(ctx)
    finally:
        await session.close()

    if result.offline:
        print("Offline: nothing pulled")
        return 2
    print(f"Applied: {result.applied}")
    print(f"Skipped: {result.skipped}")
    if result.failed_tables:
        print(f"Failed tables: {', '.join(result.failed_tables)}")
        return 1
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show queue, store and connectivity status."""
    config = load_config(args.config)

    realtime_enabled = config.realtime.enabled
    config.realtime.enabled = False
    session = SyncSession(config)
    session.open()
    try:
        online = await session.connectivity.is_online()
        sync_status = session.synchronizer.get_sync_status()
    finally:
        await session.close()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "node": {"name": config.node.name},
        "remote": {"url": config.remote.url, "online": online},
        "realtime": {
            "enabled": realtime_enabled,
            "broker": config.realtime.broker,
            "port": config.realtime.port,
        },
        "queue": sync_status["queue"],
        "store": sync_status["store"],
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    queue = status_data["queue"]
    print("possync Status")
    print("==============")
    print(f"Node: {config.node.name}")
    print()
    print(f"Remote ({config.remote.url}):")
    print(f"  Status: {'Online' if online else 'Offline'}")
    print()
    print("Queue:")
    print(f"  Pending entries: {queue['pending_entries']}")
    print(f"  Exhausted entries: {queue['exhausted_entries']}")
    for table, count in sorted(queue["entries_by_table"].items()):
        print(f"    - {table}: {count}")
    print()
    print("Local store:")
    for key, value in status_data["store"].items():
        print(f"  {key}: {value}")

    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    """Drop queue entries that exhausted their retries."""
    config = load_config(args.config)

    config.realtime.enabled = False
    session = SyncSession(config)
    session.open()
    try:
        pruned = session.synchronizer.prune_exhausted()
    finally:
        session.queue.close()
        session.store.close()

    print(f"Dropped {len(pruned)} exhausted entries")
    for entry in pruned:
        print(f"  - #{entry.sequence_id} {entry.table}:{entry.operation.value} {entry.record_id}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="possync",
        description="Offline-first sync engine for a multi-tenant POS",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    tenant_parent = argparse.ArgumentParser(add_help=False)
    tenant_parent.add_argument(
        "-t", "--tenant",
        type=str,
        default=None,
        help="Restaurant id to sync (default: session.tenant_id)",
    )
    tenant_parent.add_argument(
        "-u", "--user",
        type=str,
        default=None,
        help="Signed-in user id",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser(
        "run", parents=[tenant_parent], help="Run a tenant sync session"
    )
    run_parser.set_defaults(func=cmd_run)

    sync_parser = subparsers.add_parser(
        "sync", parents=[tenant_parent], help="Push queued writes once"
    )
    sync_parser.add_argument(
        "--no-pull",
        action="store_true",
        help="Skip the full pull after pushing",
    )
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Output result as JSON",
    )
    sync_parser.set_defaults(func=cmd_sync)

    pull_parser = subparsers.add_parser(
        "pull", parents=[tenant_parent], help="Pull all tenant data"
    )
    pull_parser.set_defaults(func=cmd_pull)

    status_parser = subparsers.add_parser("status", help="Show queue and store status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    prune_parser = subparsers.add_parser(
        "prune", help="Drop entries that exhausted their retries"
    )
    prune_parser.set_defaults(func=cmd_prune)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    func = args.func
    try:
        if inspect.iscoroutinefunction(func):
            return asyncio.run(func(args))
        return func(args)
    except KeyboardInterrupt:
        return 130
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
