"""Tests for the queue stores.

Behavioral tests run against both the in-memory and the SQLite store.
"""

from __future__ import annotations

import json
import threading
from datetime import timedelta
from pathlib import Path

import pytest

from herald.errors import ConfigurationError, ErrorCode, NotificationNotFoundError, StoreError
from herald.scheduler.models import Priority, QueueStatus
from herald.scheduler.store import InMemoryQueueStore, SqliteQueueStore, create_store
from tests.helpers import START, make_item


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path: Path):
    """Each queue store implementation."""
    if request.param == "memory":
        yield InMemoryQueueStore()
    else:
        store = SqliteQueueStore(tmp_path / "queue.db")
        yield store
        store.close()


class TestQueueStoreContract:
    """Behavior shared by every QueueStore."""

    def test_create_and_get(self, any_store) -> None:
        item = make_item(priority=Priority.HIGH, metadata={"template_id": "t1"})
        any_store.create(item)

        fetched = any_store.get(item.id)

        assert fetched == item

    def test_get_missing_returns_none(self, any_store) -> None:
        assert any_store.get("notif_missing") is None

    def test_returned_items_are_copies(self, any_store) -> None:
        item = make_item()
        any_store.create(item)

        fetched = any_store.get(item.id)
        fetched.status = QueueStatus.CANCELLED
        fetched.metadata["changed"] = True

        again = any_store.get(item.id)
        assert again.status == QueueStatus.PENDING
        assert "changed" not in again.metadata

    def test_duplicate_id_rejected(self, any_store) -> None:
        item = make_item()
        any_store.create(item)

        with pytest.raises(StoreError) as exc_info:
            any_store.create(item)

        assert exc_info.value.code == ErrorCode.STO_DUPLICATE

    def test_update_persists_changes(self, any_store) -> None:
        item = make_item()
        any_store.create(item)

        item.mark_cancelled()
        any_store.update(item)

        assert any_store.get(item.id).status == QueueStatus.CANCELLED

    def test_update_unknown_item_raises(self, any_store) -> None:
        with pytest.raises(NotificationNotFoundError):
            any_store.update(make_item())

    def test_list_due_orders_by_priority_then_time(self, any_store) -> None:
        low_early = make_item(priority=Priority.LOW, scheduled_for=START - timedelta(hours=2))
        urgent = make_item(priority=Priority.URGENT, scheduled_for=START - timedelta(minutes=1))
        normal_late = make_item(scheduled_for=START)
        normal_early = make_item(scheduled_for=START - timedelta(hours=1))
        for item in (low_early, urgent, normal_late, normal_early):
            any_store.create(item)

        due = any_store.list_due(START)

        assert [i.id for i in due] == [urgent.id, normal_early.id, normal_late.id, low_early.id]

    def test_list_due_excludes_future_and_non_pending(self, any_store) -> None:
        future = make_item(scheduled_for=START + timedelta(seconds=1))
        cancelled = make_item()
        cancelled.mark_cancelled()
        due = make_item()
        for item in (future, cancelled, due):
            any_store.create(item)

        assert [i.id for i in any_store.list_due(START)] == [due.id]

    def test_claim_moves_to_processing_once(self, any_store) -> None:
        item = make_item()
        any_store.create(item)

        claimed = any_store.claim(item.id, START)
        second = any_store.claim(item.id, START)

        assert claimed is not None
        assert claimed.status == QueueStatus.PROCESSING
        assert claimed.last_attempt == START
        assert second is None
        assert any_store.get(item.id).status == QueueStatus.PROCESSING

    def test_claim_not_due_returns_none(self, any_store) -> None:
        item = make_item(scheduled_for=START + timedelta(minutes=5))
        any_store.create(item)

        assert any_store.claim(item.id, START) is None
        assert any_store.get(item.id).status == QueueStatus.PENDING

    def test_claim_missing_returns_none(self, any_store) -> None:
        assert any_store.claim("notif_missing", START) is None

    def test_update_if_status(self, any_store) -> None:
        item = make_item()
        any_store.create(item)
        claimed = any_store.claim(item.id, START)

        # A concurrent cancel lands first
        cancelled = any_store.get(item.id)
        cancelled.mark_cancelled()
        any_store.update(cancelled)

        claimed.mark_sent("msg-1")
        assert not any_store.update_if_status(claimed, QueueStatus.PROCESSING)
        assert any_store.get(item.id).status == QueueStatus.CANCELLED

        cancelled.reschedule(START)
        assert any_store.update_if_status(cancelled, QueueStatus.CANCELLED)
        assert any_store.get(item.id).status == QueueStatus.PENDING

    def test_list_items_filters(self, any_store) -> None:
        a = make_item(user_id="a", scheduled_for=START + timedelta(hours=2))
        b = make_item(user_id="a", scheduled_for=START + timedelta(hours=1))
        c = make_item(user_id="b")
        c.mark_cancelled()
        for item in (a, b, c):
            any_store.create(item)

        assert [i.id for i in any_store.list_items(user_id="a")] == [b.id, a.id]
        assert [i.id for i in any_store.list_items(status=QueueStatus.CANCELLED)] == [c.id]
        assert len(any_store.list_items()) == 3

    def test_count_by_status_includes_zeros(self, any_store) -> None:
        any_store.create(make_item())
        any_store.create(make_item())

        counts = any_store.count_by_status()

        assert counts[QueueStatus.PENDING] == 2
        assert counts[QueueStatus.SENT] == 0
        assert set(counts) == set(QueueStatus)

    def test_delete_only_terminal(self, any_store) -> None:
        pending = make_item()
        cancelled = make_item()
        cancelled.mark_cancelled()
        any_store.create(pending)
        any_store.create(cancelled)

        assert not any_store.delete(pending.id)
        assert any_store.delete(cancelled.id)
        assert not any_store.delete(cancelled.id)
        assert any_store.get(cancelled.id) is None
        assert any_store.get(pending.id) is not None

    def test_release_stale_only_old_claims(self, any_store) -> None:
        old = make_item()
        fresh = make_item()
        pending = make_item()
        for item in (old, fresh, pending):
            any_store.create(item)
        any_store.claim(old.id, START)
        any_store.claim(fresh.id, START + timedelta(minutes=20))

        released = any_store.release_stale(START + timedelta(minutes=10))

        assert released == 1
        assert any_store.get(old.id).status == QueueStatus.PENDING
        assert any_store.get(fresh.id).status == QueueStatus.PROCESSING
        assert any_store.get(pending.id).status == QueueStatus.PENDING
        assert any_store.release_stale(START + timedelta(minutes=10)) == 0

    def test_concurrent_claims_have_one_winner(self, any_store) -> None:
        item = make_item()
        any_store.create(item)
        results = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            results.append(any_store.claim(item.id, START))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert sum(1 for r in results if r is not None) == 1


class TestInMemoryPersistence:
    """Tests for the in-memory store's JSON snapshot."""

    def test_snapshot_survives_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.json"
        store = InMemoryQueueStore(persistence_path=path)
        item = make_item()
        store.create(item)

        reloaded = InMemoryQueueStore(persistence_path=path)

        assert reloaded.get(item.id) == item

    def test_processing_items_reset_on_load(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.json"
        store = InMemoryQueueStore(persistence_path=path)
        item = make_item()
        store.create(item)
        store.claim(item.id, START)

        reloaded = InMemoryQueueStore(persistence_path=path)

        assert reloaded.get(item.id).status == QueueStatus.PENDING

    def test_invalid_snapshot_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.json"
        path.write_text("{not json")

        store = InMemoryQueueStore(persistence_path=path)

        assert len(store) == 0

    def test_unreadable_items_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.json"
        good = make_item()
        path.write_text(json.dumps({"version": 1, "items": [{"id": "bad"}, good.to_dict()]}))

        store = InMemoryQueueStore(persistence_path=path)

        assert len(store) == 1
        assert store.get(good.id) == good

    def test_failed_snapshot_leaves_store_unchanged(self, tmp_path: Path) -> None:
        """A change is only kept once its snapshot is on disk."""
        path = tmp_path / "queue.json"
        store = InMemoryQueueStore(persistence_path=path)
        existing = make_item()
        store.create(existing)

        def refuse_replace(self, target):
            raise OSError("read-only file system")

        item = make_item()
        with pytest.MonkeyPatch.context() as patched:
            patched.setattr(Path, "replace", refuse_replace)

            with pytest.raises(StoreError) as exc_info:
                store.create(item)
            assert exc_info.value.code == ErrorCode.STO_WRITE_FAILED
            assert len(store) == 1
            assert store.get(item.id) is None

            with pytest.raises(StoreError):
                store.claim(existing.id, START)
            assert store.get(existing.id).status == QueueStatus.PENDING

            cancelled = store.get(existing.id)
            cancelled.mark_cancelled()
            with pytest.raises(StoreError):
                store.update(cancelled)
            assert store.get(existing.id).status == QueueStatus.PENDING

        store.create(item)
        assert InMemoryQueueStore(persistence_path=path).get(item.id) == item

    def test_capacity_limit(self) -> None:
        store = InMemoryQueueStore(max_items=1)
        store.create(make_item())

        with pytest.raises(StoreError):
            store.create(make_item())


class TestSqliteStore:
    def test_data_survives_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "queue.db"
        store = SqliteQueueStore(path)
        item = make_item(metadata={"template_id": "weekly-digest", "original_context": {"n": 3}})
        store.create(item)
        store.close()

        reopened = SqliteQueueStore(path)
        try:
            assert reopened.get(item.id) == item
        finally:
            reopened.close()

    def test_two_stores_share_one_database(self, tmp_path: Path) -> None:
        """Separate store instances (as in separate processes) never double-claim."""
        path = tmp_path / "queue.db"
        first = SqliteQueueStore(path)
        second = SqliteQueueStore(path)
        item = make_item()
        first.create(item)

        try:
            assert first.claim(item.id, START) is not None
            assert second.claim(item.id, START) is None
        finally:
            first.close()
            second.close()


class TestCreateStore:
    def test_memory_backend(self) -> None:
        assert isinstance(create_store("memory"), InMemoryQueueStore)

    def test_sqlite_backend(self, tmp_path: Path) -> None:
        store = create_store("sqlite", tmp_path / "q.db")
        assert isinstance(store, SqliteQueueStore)
        store.close()

    def test_sqlite_requires_path(self) -> None:
        with pytest.raises(ConfigurationError):
            create_store("sqlite")

    def test_unknown_backend(self) -> None:
        with pytest.raises(ConfigurationError):
            create_store("redis")
