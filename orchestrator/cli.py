"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the blotter coordinator.

- Provides argparse-based CLI with subcommands
- Loads configuration from environment, CLI overrides it
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli run
python -m orchestrator.cli init-db
python -m orchestrator.cli status --trade-id 42
python -m orchestrator.cli priority set alice bob carol

============================================================
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from booking.types import LinkSnapshot
from core.clock import SystemClock
from core.exceptions import ConfigurationError, CoordinationException
from storage.database import (
    create_all_tables,
    create_database_engine,
    get_session_factory,
    session_scope,
    verify_database_connection,
)
from storage.repositories import (
    LeaseRepository,
    PresenceRepository,
    PriorityRepository,
    RecordNotFoundError,
    RepositoryException,
    TradeSystemLinkRepository,
    WorkflowEventRepository,
)

from .core import CoordinatorNode, setup_logging
from .models import CoordinatorConfig


logger = logging.getLogger("orchestrator.cli")


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="blotter-coordinator",
        description="Master election and booking response ingestion for blotter instances",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run       - Heartbeat, take part in election, ingest responses while master
  init-db   - Create the coordination tables
  status    - Show lease holder, online instances and priority list
  priority  - Show or change the master priority list

Examples:
  %(prog)s run --user alice
  %(prog)s status --trade-id 42
  %(prog)s priority set alice bob carol
        """
    )

    # --------------------------------------------------------
    # Common Options
    # --------------------------------------------------------
    common = argparse.ArgumentParser(add_help=False)
    common_group = common.add_argument_group("Connection Options")
    common_group.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="SQLAlchemy URL (default: DATABASE_URL)",
    )

    logging_group = common.add_argument_group("Logging Options")
    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: LOG_FORMAT or json)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --------------------------------------------------------
    # run
    # --------------------------------------------------------
    run_parser = subparsers.add_parser("run", parents=[common], help="Run the coordinator node")
    identity_group = run_parser.add_argument_group("Identity Options")
    identity_group.add_argument("--user", type=str, help="Instance user (default: BLOTTER_USER or OS user)")
    identity_group.add_argument("--machine", type=str, help="Instance machine (default: BLOTTER_MACHINE or host name)")

    ingestion_group = run_parser.add_argument_group("Ingestion Options")
    ingestion_group.add_argument("--mx3-folder", type=str, metavar="PATH", help="MX3 response folder")
    ingestion_group.add_argument("--calypso-folder", type=str, metavar="PATH", help="Calypso response folder")

    # --------------------------------------------------------
    # init-db
    # --------------------------------------------------------
    subparsers.add_parser("init-db", parents=[common], help="Create the coordination tables")

    # --------------------------------------------------------
    # status
    # --------------------------------------------------------
    status_parser = subparsers.add_parser("status", parents=[common], help="Show coordination status")
    status_parser.add_argument("--trade-id", type=int, help="Also show links and events of one trade")

    # --------------------------------------------------------
    # priority
    # --------------------------------------------------------
    priority_parser = subparsers.add_parser("priority", parents=[common], help="Manage the priority list")
    priority_sub = priority_parser.add_subparsers(dest="priority_command", required=True)
    priority_sub.add_parser("show", help="Print the priority list")
    set_parser = priority_sub.add_parser("set", help="Replace the list; first user is most preferred")
    set_parser.add_argument("users", nargs="+")
    remove_parser = priority_sub.add_parser("remove", help="Remove one user")
    remove_parser.add_argument("user")

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
    )

    return parser


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> CoordinatorConfig:
    """
    Build configuration from environment, overridden by CLI arguments.

    Raises:
        InvalidConfigError: An environment variable does not parse
    """
    config = CoordinatorConfig.from_env()

    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    if getattr(args, "user", None):
        config.user_name = args.user
    if getattr(args, "machine", None):
        config.machine_name = args.machine
    if getattr(args, "mx3_folder", None):
        config.mx3_response_folder = args.mx3_folder
    if getattr(args, "calypso_folder", None):
        config.calypso_response_folder = args.calypso_folder

    return config


# ============================================================
# COMMANDS
# ============================================================

async def run_node(config: CoordinatorConfig) -> int:
    """Run the coordinator node until a signal arrives."""
    node = CoordinatorNode(config)
    await node.run_forever()
    return 0


def init_db(config: CoordinatorConfig) -> int:
    engine = create_database_engine(config.database_url)
    if not verify_database_connection(engine):
        print("Cannot connect to the coordination database.", file=sys.stderr)
        return 1
    create_all_tables(engine)
    print("Coordination tables created.")
    return 0


def show_status(config: CoordinatorConfig, trade_id: Optional[int] = None) -> int:
    """Print lease, presence and priority (and one trade's links)."""
    engine = create_database_engine(config.database_url)
    factory = get_session_factory(engine)
    now = SystemClock().now()

    with session_scope(factory) as session:
        lease = LeaseRepository(session).get(config.lock_name)
        online = PresenceRepository(session).list_online_nodes(
            now, timedelta(seconds=config.presence_ttl_seconds)
        )
        priority = PriorityRepository(session).load_priority_list()

        print()
        print("=" * 60)
        print(f"  Lock:       {config.lock_name}")
        if lease is None:
            print("  Master:     (never held)")
        else:
            state = "valid" if now < lease.expires_at_utc else "EXPIRED"
            print(f"  Master:     {lease.held_by_user}@{lease.held_by_machine} ({state})")
            print(f"  Expires:    {lease.expires_at_utc.isoformat()}")
        print("=" * 60)
        print("  Online instances:")
        for record in online:
            age = (now - record.last_seen_utc).total_seconds()
            print(f"    {record.node_id:<40} {age:5.1f}s ago")
        if not online:
            print("    (none)")
        print("  Priority:")
        for entry in priority:
            print(f"    {entry.order_no:>3}. {entry.user_name}")
        if not priority:
            print("    (empty)")

        if trade_id is not None:
            print(f"  Trade {trade_id}:")
            for record in TradeSystemLinkRepository(session).list_for_trade(trade_id):
                link = LinkSnapshot.from_record(record)
                print(f"    {link.system_code.value:<14} {link.status.value:<13} {link.external_trade_id or ''}")
            for event in WorkflowEventRepository(session).list_for_trade(trade_id):
                print(
                    f"    {event.timestamp_utc.isoformat()} {event.event_type:<20} "
                    f"{event.system_code or '':<14} {event.user_id} {event.details or ''}"
                )
        print("=" * 60)
        print()
    return 0


def manage_priority(config: CoordinatorConfig, args: argparse.Namespace) -> int:
    engine = create_database_engine(config.database_url)
    factory = get_session_factory(engine)

    with session_scope(factory) as session:
        repo = PriorityRepository(session)
        if args.priority_command == "set":
            repo.replace_all(args.users)
        elif args.priority_command == "remove":
            try:
                repo.remove(args.user)
            except RecordNotFoundError:
                print(f"{args.user} is not in the priority list", file=sys.stderr)
                return 1
        for entry in repo.load_priority_list():
            print(f"{entry.order_no:>3}. {entry.user_name}")
    return 0


# ============================================================
# MAIN
# ============================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
        setup_logging(config.log_level, config.log_format, config.node_id)

        if args.command == "run":
            config.require_valid()
            print_banner(config)
            return asyncio.run(run_node(config))
        if args.command == "init-db":
            return init_db(config)
        if args.command == "status":
            return show_status(config, args.trade_id)
        if args.command == "priority":
            return manage_priority(config, args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    except (CoordinationException, RepositoryException, SQLAlchemyError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    parser.error(f"unknown command {args.command}")
    return 2


def print_banner(config: CoordinatorConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  BLOTTER COORDINATOR")
    print("=" * 60)
    print(f"  Node:       {config.node_id}")
    print(f"  Lock:       {config.lock_name}")
    print(f"  Lease TTL:  {config.lease_ttl_seconds:.0f}s")
    print(f"  Election:   every {config.election_interval_seconds:.0f}s")
    print(f"  MX3:        {config.mx3_response_folder or '-'}")
    print(f"  Calypso:    {config.calypso_response_folder or '-'}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
