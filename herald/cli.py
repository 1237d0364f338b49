"""Admin CLI for the notification queue.

Commands:
    stats   Show notification counts by status
    list    List queued notifications
    purge   Delete sent, failed and cancelled notifications

Examples:
    python -m herald stats
    python -m herald --db ~/.herald/queue.db list --user u1 --status pending
    python -m herald purge
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from herald import __version__
from herald.config import HeraldConfig, get_store_path, load_config
from herald.errors import HeraldError
from herald.scheduler.housekeeping import QueueHousekeeper
from herald.scheduler.interfaces import QueueStore
from herald.scheduler.models import QueueStatus
from herald.scheduler.store import SqliteQueueStore, create_store

console = Console()
logger = logging.getLogger(__name__)

STATUS_COLORS = {
    QueueStatus.PENDING.value: "cyan",
    QueueStatus.PROCESSING.value: "yellow",
    QueueStatus.SENT.value: "green",
    QueueStatus.FAILED.value: "red",
    QueueStatus.CANCELLED.value: "dim",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def create_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="herald",
        description="herald - inspect and maintain the notification queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m herald stats                 # Counts by status
  python -m herald list --status failed  # Failed notifications
  python -m herald purge                 # Remove finished notifications
        """,
    )
    parser.add_argument("--version", action="version", version=f"herald {__version__}")
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--db", type=Path, help="SQLite queue database (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show notification counts by status")

    list_parser = subparsers.add_parser("list", help="List queued notifications")
    list_parser.add_argument("--user", help="Only this user's notifications")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in QueueStatus],
        help="Only notifications with this status",
    )
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")

    subparsers.add_parser("purge", help="Delete sent, failed and cancelled notifications")

    return parser


def open_store(config: HeraldConfig, db_path: Path | None = None) -> QueueStore:
    """Open the queue store named by the CLI flags or the config."""
    if db_path is not None:
        return SqliteQueueStore(db_path.expanduser())
    return create_store(config.store.backend, get_store_path(config))


def cmd_stats(store: QueueStore) -> int:
    stats = QueueHousekeeper(store).get_queue_stats()

    table = Table(title="Notification Queue")
    table.add_column("Status", style="bold")
    table.add_column("Count", justify="right")

    for status in QueueStatus:
        color = STATUS_COLORS.get(status.value, "white")
        table.add_row(Text(status.value, style=color), str(stats[status.value]))
    table.add_section()
    table.add_row("total", str(stats["total"]))

    console.print(table)
    return 0


def cmd_list(store: QueueStore, user: str | None, status: str | None, limit: int) -> int:
    items = store.list_items(
        user_id=user,
        status=QueueStatus(status) if status else None,
    )

    if not items:
        console.print("[dim]No notifications found.[/dim]")
        return 0

    table = Table(title=f"Notifications ({min(len(items), limit)} of {len(items)})")
    table.add_column("ID", style="dim")
    table.add_column("User")
    table.add_column("Template")
    table.add_column("Scheduled For")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Last Error")

    for item in items[:limit]:
        table.add_row(
            item.id,
            item.user_id,
            item.template_id,
            item.scheduled_for.strftime("%Y-%m-%d %H:%M UTC"),
            item.priority.value,
            Text(item.status.value, style=STATUS_COLORS.get(item.status.value, "white")),
            f"{item.retry_count}/{item.max_retries}",
            item.last_error or "",
        )

    console.print(table)
    return 0


def cmd_purge(store: QueueStore) -> int:
    removed = QueueHousekeeper(store).clear_completed()
    console.print(f"[green]Removed {removed} completed notification(s).[/green]")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    config = load_config(args.config.expanduser() if args.config else None)

    store: QueueStore | None = None
    try:
        store = open_store(config, args.db)
        if args.command == "stats":
            return cmd_stats(store)
        if args.command == "list":
            return cmd_list(store, args.user, args.status, args.limit)
        if args.command == "purge":
            return cmd_purge(store)
    except HeraldError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        logger.debug(f"HeraldError details - code={e.code.value}, details={e.details}")
        return 1
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
