"""Tests for the admin CLI."""

from __future__ import annotations

import pytest

from herald.cli import create_parser, main
from herald.scheduler.models import QueueStatus
from herald.scheduler.store import SqliteQueueStore
from tests.helpers import make_item


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "queue.db"
    store = SqliteQueueStore(path)
    pending = make_item(user_id="alice")
    sent = make_item(user_id="bob")
    sent.status = QueueStatus.SENT
    store.create(pending)
    store.create(sent)
    store.close()
    return path


class TestParser:
    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_list_options(self) -> None:
        args = create_parser().parse_args(["list", "--user", "u1", "--status", "failed"])
        assert args.command == "list"
        assert args.user == "u1"
        assert args.status == "failed"
        assert args.limit == 50

    def test_rejects_unknown_status(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args(["list", "--status", "lost"])


class TestCommands:
    def test_stats(self, db_path, capsys) -> None:
        assert main(["--db", str(db_path), "stats"]) == 0
        output = capsys.readouterr().out
        assert "pending" in output
        assert "total" in output

    def test_stats_memory_backend(self, capsys) -> None:
        assert main(["stats"]) == 0

    def test_list_filters_by_user(self, db_path, capsys) -> None:
        assert main(["--db", str(db_path), "list", "--user", "alice"]) == 0
        assert "(1 of 1)" in capsys.readouterr().out

    def test_list_empty(self, db_path, capsys) -> None:
        assert main(["--db", str(db_path), "list", "--status", "failed"]) == 0
        assert "No notifications found" in capsys.readouterr().out

    def test_purge(self, db_path, capsys) -> None:
        assert main(["--db", str(db_path), "purge"]) == 0
        assert "Removed 1 completed notification(s)." in capsys.readouterr().out

        store = SqliteQueueStore(db_path)
        try:
            assert [i.user_id for i in store.list_items()] == ["alice"]
        finally:
            store.close()

    def test_store_error_returns_1(self, tmp_path, capsys) -> None:
        # A directory cannot be opened as a database
        assert main(["--db", str(tmp_path), "stats"]) == 1
        assert "Error" in capsys.readouterr().out

    @pytest.mark.parametrize("command", [["stats"], ["list"], ["purge"]])
    def test_store_closed_after_command(self, db_path, monkeypatch, command) -> None:
        closed = []
        original_close = SqliteQueueStore.close

        def recording_close(self) -> None:
            closed.append(self.db_path)
            original_close(self)

        monkeypatch.setattr(SqliteQueueStore, "close", recording_close)

        assert main(["--db", str(db_path), *command]) == 0
        assert closed == [db_path]
