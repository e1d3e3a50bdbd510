"""Command-line interface for dealsync.

Commands:
- serve: Run the API server with uvicorn
- purge-flash-deals: Delete flash deals that expired long ago
- queue show: List the client's pending actions
- queue drain: Replay pending actions against a server
- queue clear: Discard all pending actions
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import click

from dealsync import __version__
from dealsync.client.kvstore import SQLiteKVStore
from dealsync.client.queue import DrainReport, PendingAction, PendingActionQueue
from dealsync.core.config import DealSyncConfig

DEFAULT_CLIENT_STORE = "dealsync-client.db"


@click.group()
@click.version_option(version=__version__, prog_name="dealsync")
def cli() -> None:
    """DealSync - Offline-first street vendor deals."""


# === Server commands ===


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port.")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: DEALSYNC_DB_PATH or ./dealsync.db).",
)
@click.option("--reload", is_flag=True, help="Reload on code changes (development).")
def serve(host: str, port: int, db_path: str | None, reload: bool) -> None:
    """Run the DealSync API server."""
    import uvicorn

    if db_path:
        os.environ["DEALSYNC_DB_PATH"] = db_path

    uvicorn.run(
        "dealsync.server.app:app_factory",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@cli.command("purge-flash-deals")
@click.option(
    "--older-than-days",
    "-d",
    type=int,
    default=None,
    help="Delete deals expired more than N days ago (default: server config).",
)
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: DEALSYNC_DB_PATH or ./dealsync.db).",
)
def purge_flash_deals_cmd(older_than_days: int | None, db_path: str | None) -> None:
    """Purge flash deals that expired long ago.

    Examples:

        # Purge using server defaults (7 days)
        dealsync purge-flash-deals

        # Purge deals expired more than a day ago
        dealsync purge-flash-deals --older-than-days 1
    """
    from dealsync.server.database import Database
    from dealsync.server.scheduler import DEFAULT_RETENTION_DAYS, purge_expired_flash_deals

    resolved_db_path = db_path or os.environ.get("DEALSYNC_DB_PATH", "dealsync.db")
    default_days = int(
        os.environ.get("DEALSYNC_FLASH_RETENTION_DAYS", str(DEFAULT_RETENTION_DAYS))
    )
    days = older_than_days if older_than_days is not None else default_days

    db_file = Path(resolved_db_path)
    if not db_file.exists():
        click.echo(f"Error: Database not found: {db_file}", err=True)
        click.echo("Make sure the server has been run at least once.", err=True)
        sys.exit(1)

    click.echo(f"Database: {db_file}")
    click.echo(f"Purging flash deals expired more than {days} days ago...")

    db = Database(db_file)
    try:
        deleted = purge_expired_flash_deals(db, days)
        if deleted > 0:
            click.echo(f"Purged {deleted} flash deals.")
        else:
            click.echo("No flash deals to purge.")
    finally:
        db.close()


# === Client queue commands ===


def _store_path(store: str | None) -> Path:
    return Path(store or os.environ.get("DEALSYNC_CLIENT_STORE", DEFAULT_CLIENT_STORE))


store_option = click.option(
    "--store",
    type=click.Path(),
    default=None,
    help="Client store file (default: DEALSYNC_CLIENT_STORE or ./dealsync-client.db).",
)


def _format_action(action: PendingAction) -> str:
    created = action.created_at.strftime("%Y-%m-%d %H:%M:%S")
    return (
        f"{action.id}  {action.type.value:<8}  {created}  "
        f"retries={action.retry_count}  {action.payload}"
    )


@cli.group()
def queue() -> None:
    """Inspect and replay the client's pending actions."""


@queue.command("show")
@store_option
def queue_show(store: str | None) -> None:
    """List pending actions in FIFO order."""

    async def run() -> list[PendingAction]:
        kv = SQLiteKVStore(_store_path(store))
        try:
            return await PendingActionQueue(kv).load()
        finally:
            kv.close()

    actions = asyncio.run(run())
    if not actions:
        click.echo("No pending actions.")
        return
    click.echo(f"{len(actions)} pending actions:")
    for action in actions:
        click.echo("  " + _format_action(action))


@queue.command("clear")
@store_option
@click.confirmation_option(prompt="Discard all pending actions?")
def queue_clear(store: str | None) -> None:
    """Discard all pending actions."""

    async def run() -> int:
        kv = SQLiteKVStore(_store_path(store))
        try:
            q = PendingActionQueue(kv)
            await q.load()
            return await q.clear()
        finally:
            kv.close()

    count = asyncio.run(run())
    click.echo(f"Discarded {count} pending actions.")


@queue.command("drain")
@store_option
@click.option("--server", "server_url", required=True, help="Server URL.")
@click.option("--user-id", required=True, help="User identity sent as X-User-Id.")
def queue_drain(store: str | None, server_url: str, user_id: str) -> None:
    """Replay pending actions against the server once."""
    from dealsync.client.api import DealsClient
    from dealsync.core.config import ServerConfig

    config = DealSyncConfig.from_env()

    async def run() -> tuple[list[PendingAction], DrainReport]:
        kv = SQLiteKVStore(_store_path(store))
        try:
            q = PendingActionQueue(
                kv, max_retries=config.max_retries, timeout=config.request_timeout
            )
            await q.load()
            server_config = ServerConfig(server_url, user_id, timeout=config.request_timeout)
            async with DealsClient(server_config) as client:
                remaining = await q.drain(client.apply)
            return remaining, q.last_report
        finally:
            kv.close()

    remaining, report = asyncio.run(run())
    click.echo(
        f"Applied {len(report.succeeded)}, retrying {len(report.retried)}, "
        f"dropped {len(report.dropped)}."
    )
    click.echo(f"{len(remaining)} actions remain queued.")
    if report.retried:
        sys.exit(1)


if __name__ == "__main__":
    cli()
