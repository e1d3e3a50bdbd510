"""Tests for CLI commands - purge-flash-deals, queue show/clear/drain."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from dealsync import __version__
from dealsync.cli import cli
from dealsync.client.api import TransientError
from dealsync.client.kvstore import SQLiteKVStore
from dealsync.client.queue import PendingAction, PendingActionQueue
from dealsync.core.types import ActionType
from dealsync.server.database import Database


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Client store with two pending actions."""
    path = tmp_path / "client.db"

    async def seed() -> None:
        kv = SQLiteKVStore(path)
        try:
            queue = PendingActionQueue(kv)
            await queue.enqueue(ActionType.FAVORITE, {"vendor_id": "v1"})
            await queue.enqueue(ActionType.REDEEM, {"deal_id": "fd1"})
        finally:
            kv.close()

    asyncio.run(seed())
    return path


def load_queue(path: Path) -> list[PendingAction]:
    async def load() -> list[PendingAction]:
        kv = SQLiteKVStore(path)
        try:
            return await PendingActionQueue(kv).load()
        finally:
            kv.close()

    return asyncio.run(load())


class FakeDealsClient:
    """DealsClient stand-in whose apply() fails for redemptions."""

    def __init__(self, config: Any) -> None:
        self.config = config

    async def __aenter__(self) -> "FakeDealsClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    async def apply(self, action: PendingAction) -> str:
        if action.type is ActionType.REDEEM:
            raise TransientError("server unreachable")
        return "applied"


class TestVersion:
    """Tests for 'dealsync --version'."""

    def test_version(self, runner: CliRunner) -> None:
        """Should print the package version."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestPurgeFlashDealsCommand:
    """Tests for 'dealsync purge-flash-deals' command."""

    def test_missing_database(self, runner: CliRunner, tmp_path: Path) -> None:
        """Should fail when the database does not exist."""
        result = runner.invoke(cli, ["purge-flash-deals", "--db-path", str(tmp_path / "none.db")])
        assert result.exit_code == 1
        assert "Database not found" in result.output

    def test_purges_old_deals(self, runner: CliRunner, tmp_path: Path) -> None:
        """Should delete deals expired beyond the retention period."""
        db_path = tmp_path / "server.db"
        db = Database(db_path)
        long_ago = datetime.now(UTC) - timedelta(days=30)
        db.create_flash_deal("old", "v1", "Old", long_ago, long_ago)
        db.close()

        result = runner.invoke(cli, ["purge-flash-deals", "-d", "7", "--db-path", str(db_path)])
        assert result.exit_code == 0
        assert "Purged 1 flash deals." in result.output

        result = runner.invoke(cli, ["purge-flash-deals", "--db-path", str(db_path)])
        assert result.exit_code == 0
        assert "No flash deals to purge." in result.output


class TestQueueCommands:
    """Tests for 'dealsync queue' commands."""

    def test_show_empty(self, runner: CliRunner, tmp_path: Path) -> None:
        """Should report an empty queue."""
        result = runner.invoke(cli, ["queue", "show", "--store", str(tmp_path / "empty.db")])
        assert result.exit_code == 0
        assert "No pending actions." in result.output

    def test_show(self, runner: CliRunner, store_path: Path) -> None:
        """Should list actions in FIFO order."""
        result = runner.invoke(cli, ["queue", "show", "--store", str(store_path)])
        assert result.exit_code == 0
        assert "2 pending actions:" in result.output
        assert result.output.index("favorite") < result.output.index("redeem")

    def test_show_uses_env_store(self, runner: CliRunner, store_path: Path) -> None:
        """DEALSYNC_CLIENT_STORE should select the store."""
        result = runner.invoke(cli, ["queue", "show"], env={"DEALSYNC_CLIENT_STORE": str(store_path)})
        assert "2 pending actions:" in result.output

    def test_clear_requires_confirmation(self, runner: CliRunner, store_path: Path) -> None:
        """Declining the prompt should keep the queue."""
        result = runner.invoke(cli, ["queue", "clear", "--store", str(store_path)], input="n\n")
        assert result.exit_code != 0
        assert len(load_queue(store_path)) == 2

    def test_clear(self, runner: CliRunner, store_path: Path) -> None:
        """--yes should discard everything."""
        result = runner.invoke(cli, ["queue", "clear", "--store", str(store_path), "--yes"])
        assert result.exit_code == 0
        assert "Discarded 2 pending actions." in result.output
        assert load_queue(store_path) == []

    def test_drain(self, runner: CliRunner, store_path: Path) -> None:
        """Should apply what it can and exit non-zero while retries remain."""
        with patch("dealsync.client.api.DealsClient", FakeDealsClient):
            result = runner.invoke(
                cli,
                [
                    "queue",
                    "drain",
                    "--store",
                    str(store_path),
                    "--server",
                    "http://localhost:8000",
                    "--user-id",
                    "u1",
                ],
            )
        assert result.exit_code == 1
        assert "Applied 1, retrying 1, dropped 0." in result.output
        assert "1 actions remain queued." in result.output

        remaining = load_queue(store_path)
        assert [a.type for a in remaining] == [ActionType.REDEEM]
        assert remaining[0].retry_count == 1
