"""Queue stores for scheduled notifications.

Two implementations of the QueueStore protocol:

- InMemoryQueueStore: thread-safe dict, optionally snapshotted to a JSON file.
  Single-process only.
- SqliteQueueStore: durable store whose claim is a single conditional UPDATE,
  so several processes can share one database file without double dispatch.

Both hand out copies of items; changes are only visible after update().

Usage:
    from herald.scheduler.store import InMemoryQueueStore, SqliteQueueStore

    store = SqliteQueueStore(Path("~/.herald/queue.db").expanduser())
    store.create(item)
    due = store.list_due(datetime.now(UTC))
"""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from herald.errors import (
    ConfigurationError,
    ErrorCode,
    NotificationNotFoundError,
    StoreError,
)
from herald.scheduler.clock import to_utc
from herald.scheduler.models import (
    NotificationPayload,
    Priority,
    QueueItem,
    QueueStatus,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def _ordered(items: list[QueueItem]) -> list[QueueItem]:
    return sorted(items, key=lambda i: i.sort_key())


class InMemoryQueueStore:
    """Thread-safe in-process queue store.

    Attributes:
        persistence_path: Optional JSON snapshot written after every change.
        max_items: Optional capacity limit.
    """

    def __init__(
        self,
        persistence_path: Path | None = None,
        max_items: int | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            persistence_path: JSON snapshot file. None keeps items in memory only.
            max_items: Maximum number of items held (None for unbounded).
        """
        self._items: dict[str, QueueItem] = {}
        self._lock = threading.RLock()
        self._persistence_path = persistence_path
        self._max_items = max_items

        if self._persistence_path is not None:
            self._load()

    def create(self, item: QueueItem) -> QueueItem:
        """Add a new item.

        Raises:
            StoreError: If the id already exists or the store is full.
        """
        with self._lock:
            if item.id in self._items:
                raise StoreError(
                    f"Duplicate queue item id: {item.id}",
                    store="memory",
                    operation="create",
                    code=ErrorCode.STO_DUPLICATE,
                )
            if self._max_items is not None and len(self._items) >= self._max_items:
                raise StoreError(
                    f"Queue at maximum capacity ({self._max_items})",
                    store="memory",
                    operation="create",
                    code=ErrorCode.STO_WRITE_FAILED,
                )

            self._commit({item.id: copy.deepcopy(item)})

        logger.debug(f"Queue item created: {item.id} for {item.scheduled_for.isoformat()}")
        return item

    def get(self, item_id: str) -> QueueItem | None:
        with self._lock:
            item = self._items.get(item_id)
            return copy.deepcopy(item) if item is not None else None

    def update(self, item: QueueItem) -> None:
        with self._lock:
            if item.id not in self._items:
                raise NotificationNotFoundError(
                    f"Cannot update unknown notification {item.id}", item_id=item.id
                )
            self._commit({item.id: copy.deepcopy(item)})

    def update_if_status(self, item: QueueItem, expected: QueueStatus) -> bool:
        with self._lock:
            current = self._items.get(item.id)
            if current is None or current.status != expected:
                return False
            self._commit({item.id: copy.deepcopy(item)})
            return True

    def claim(self, item_id: str, now: datetime) -> QueueItem | None:
        with self._lock:
            current = self._items.get(item_id)
            if current is None or not current.is_due(to_utc(now)):
                return None
            claimed = copy.deepcopy(current)
            claimed.mark_processing(now)
            self._commit({item_id: claimed})
            return copy.deepcopy(claimed)

    def release_stale(self, older_than: datetime) -> int:
        """Return processing items claimed before ``older_than`` to pending.

        Returns:
            Number of items released.
        """
        cutoff = to_utc(older_than)
        with self._lock:
            released: dict[str, QueueItem | None] = {}
            for item in self._items.values():
                if item.status != QueueStatus.PROCESSING:
                    continue
                if item.last_attempt is not None and item.last_attempt >= cutoff:
                    continue
                stale = copy.deepcopy(item)
                stale.transition(QueueStatus.PENDING)
                released[stale.id] = stale
            if released:
                self._commit(released)
        return len(released)

    def list_due(self, now: datetime) -> list[QueueItem]:
        now = to_utc(now)
        with self._lock:
            due = [copy.deepcopy(i) for i in self._items.values() if i.is_due(now)]
        return _ordered(due)

    def list_items(
        self,
        user_id: str | None = None,
        status: QueueStatus | None = None,
    ) -> list[QueueItem]:
        """List items, optionally filtered, ordered by scheduled_for."""
        with self._lock:
            items = [copy.deepcopy(i) for i in self._items.values()]

        if user_id is not None:
            items = [i for i in items if i.user_id == user_id]
        if status is not None:
            items = [i for i in items if i.status == status]

        items.sort(key=lambda i: (i.scheduled_for, -i.priority.score))
        return items

    def count_by_status(self) -> dict[QueueStatus, int]:
        with self._lock:
            counts = {status: 0 for status in QueueStatus}
            for item in self._items.values():
                counts[item.status] += 1
        return counts

    def delete(self, item_id: str) -> bool:
        """Delete a terminal item.

        Returns:
            True if deleted, False if missing or not terminal.
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return False
            if not item.is_terminal:
                logger.warning(f"Cannot delete non-terminal item: {item_id}")
                return False

            self._commit({item_id: None})

        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _commit(self, changes: dict[str, QueueItem | None]) -> None:
        """Apply changes (None deletes) once the snapshot is written. Caller holds the lock."""
        items = dict(self._items)
        for item_id, item in changes.items():
            if item is None:
                items.pop(item_id, None)
            else:
                items[item_id] = item
        self._persist(items)
        self._items = items

    def _persist(self, items: dict[str, QueueItem]) -> None:
        """Write the JSON snapshot, if configured."""
        if self._persistence_path is None:
            return

        data = {
            "version": SNAPSHOT_VERSION,
            "items": [item.to_dict() for item in items.values()],
        }
        tmp_path = self._persistence_path.with_suffix(self._persistence_path.suffix + ".tmp")
        try:
            self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(self._persistence_path)
        except OSError as e:
            raise StoreError(
                f"Failed to persist queue snapshot: {e}",
                store="memory",
                operation="persist",
                code=ErrorCode.STO_WRITE_FAILED,
                cause=e,
            ) from e

    def _load(self) -> None:
        """Load the JSON snapshot if one exists."""
        path = cast(Path, self._persistence_path)
        if not path.exists():
            logger.debug(f"No persisted queue at {path}")
            return

        try:
            with path.open() as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in queue snapshot {path}: {e}")
            return
        except OSError as e:
            raise StoreError(
                f"Cannot read queue snapshot {path}: {e}",
                store="memory",
                operation="load",
                cause=e,
            ) from e

        version = data.get("version", SNAPSHOT_VERSION)
        if version != SNAPSHOT_VERSION:
            logger.warning(f"Unknown queue snapshot version: {version}")
            return

        for item_data in data.get("items", []):
            try:
                item = QueueItem.from_dict(item_data)
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable queue item: {e}")
                continue

            # Items claimed by a process that died mid-dispatch go back to pending
            if item.status == QueueStatus.PROCESSING:
                item.status = QueueStatus.PENDING

            self._items[item.id] = item

        logger.info(f"Loaded {len(self._items)} items from {path}")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS queue_items (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    payload TEXT NOT NULL,
    scheduled_for TEXT NOT NULL,
    priority TEXT NOT NULL,
    priority_score INTEGER NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_attempt TEXT,
    last_error TEXT,
    message_id TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_queue_items_due ON queue_items(status, scheduled_for);
CREATE INDEX IF NOT EXISTS idx_queue_items_user ON queue_items(user_id, status);
"""

_COLUMNS = (
    "id, user_id, payload, scheduled_for, priority, priority_score, retry_count, "
    "max_retries, status, created_at, last_attempt, last_error, message_id, metadata"
)


def _ts(value: datetime | None) -> str | None:
    """Fixed-width UTC timestamp so text comparison matches time order."""
    if value is None:
        return None
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return to_utc(datetime.fromisoformat(value))


class SqliteQueueStore:
    """Durable queue store backed by SQLite.

    Thread-local connections; every operation runs in its own transaction.
    The database path must be a file so that all threads and processes see
    the same data.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store and create the schema.

        Args:
            db_path: Database file path.
        """
        self.db_path = db_path
        self._local = threading.local()
        self._all_connections: set[sqlite3.Connection] = set()
        self._connections_lock = threading.Lock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self.connection() as conn:
                conn.executescript(SCHEMA_SQL)
        except OSError as e:
            raise StoreError(
                f"Cannot open queue database {db_path}: {e}",
                store="sqlite",
                operation="init",
                cause=e,
            ) from e

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a thread-local connection."""
        if getattr(self._local, "connection", None) is None:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            self._local.connection = conn
            with self._connections_lock:
                self._all_connections.add(conn)
        return cast(sqlite3.Connection, self._local.connection)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, mapping failures to StoreError."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StoreError(
                f"Cannot connect to queue database: {e}", store="sqlite", cause=e
            ) from e

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Queue database error: {e}", store="sqlite", cause=e) from e
        except Exception:
            conn.rollback()
            raise

    def close(self) -> None:
        """Close all connections opened by this store."""
        with self._connections_lock:
            for conn in self._all_connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing queue database connection: {e}")
            self._all_connections.clear()
        self._local.connection = None

    @staticmethod
    def _to_row(item: QueueItem) -> dict[str, Any]:
        return {
            "id": item.id,
            "user_id": item.user_id,
            "payload": json.dumps(item.payload.to_dict()),
            "scheduled_for": _ts(item.scheduled_for),
            "priority": item.priority.value,
            "priority_score": item.priority.score,
            "retry_count": item.retry_count,
            "max_retries": item.max_retries,
            "status": item.status.value,
            "created_at": _ts(item.created_at),
            "last_attempt": _ts(item.last_attempt),
            "last_error": item.last_error,
            "message_id": item.message_id,
            "metadata": json.dumps(item.metadata, default=str),
        }

    @staticmethod
    def _from_row(row: sqlite3.Row) -> QueueItem:
        return QueueItem(
            id=row["id"],
            user_id=row["user_id"],
            payload=NotificationPayload.from_dict(json.loads(row["payload"])),
            scheduled_for=cast(datetime, _parse_ts(row["scheduled_for"])),
            priority=Priority.parse(row["priority"]),
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            status=QueueStatus(row["status"]),
            created_at=cast(datetime, _parse_ts(row["created_at"])),
            last_attempt=_parse_ts(row["last_attempt"]),
            last_error=row["last_error"],
            message_id=row["message_id"],
            metadata=json.loads(row["metadata"] or "{}"),
        )

    def create(self, item: QueueItem) -> QueueItem:
        row = self._to_row(item)
        placeholders = ", ".join(f":{k}" for k in row)
        try:
            with self.connection() as conn:
                conn.execute(f"INSERT INTO queue_items ({_COLUMNS}) VALUES ({placeholders})", row)
        except StoreError as e:
            if isinstance(e.cause, sqlite3.IntegrityError):
                e.code = ErrorCode.STO_DUPLICATE
            raise

        logger.debug(f"Queue item created: {item.id} for {item.scheduled_for.isoformat()}")
        return item

    def get(self, item_id: str) -> QueueItem | None:
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM queue_items WHERE id = ?", (item_id,)
            ).fetchone()
        return self._from_row(row) if row else None

    def _write(self, item: QueueItem, expected: QueueStatus | None) -> bool:
        row = self._to_row(item)
        assignments = ", ".join(f"{k} = :{k}" for k in row if k != "id")
        sql = f"UPDATE queue_items SET {assignments} WHERE id = :id"
        if expected is not None:
            sql += " AND status = :expected_status"
            row["expected_status"] = expected.value

        with self.connection() as conn:
            cursor = conn.execute(sql, row)
        return cursor.rowcount == 1

    def update(self, item: QueueItem) -> None:
        if not self._write(item, None):
            raise NotificationNotFoundError(
                f"Cannot update unknown notification {item.id}", item_id=item.id
            )

    def update_if_status(self, item: QueueItem, expected: QueueStatus) -> bool:
        return self._write(item, expected)

    def claim(self, item_id: str, now: datetime) -> QueueItem | None:
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE queue_items SET status = ?, last_attempt = ? "
                "WHERE id = ? AND status = ? AND scheduled_for <= ?",
                (
                    QueueStatus.PROCESSING.value,
                    _ts(now),
                    item_id,
                    QueueStatus.PENDING.value,
                    _ts(now),
                ),
            )
            if cursor.rowcount != 1:
                return None
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM queue_items WHERE id = ?", (item_id,)
            ).fetchone()
        return self._from_row(row)

    def release_stale(self, older_than: datetime) -> int:
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE queue_items SET status = ? "
                "WHERE status = ? AND (last_attempt IS NULL OR last_attempt < ?)",
                (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value, _ts(older_than)),
            )
        return cursor.rowcount

    def list_due(self, now: datetime) -> list[QueueItem]:
        with self.connection() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM queue_items "
                "WHERE status = ? AND scheduled_for <= ? "
                "ORDER BY priority_score DESC, scheduled_for ASC, created_at ASC",
                (QueueStatus.PENDING.value, _ts(now)),
            ).fetchall()
        return [self._from_row(r) for r in rows]

    def list_items(
        self,
        user_id: str | None = None,
        status: QueueStatus | None = None,
    ) -> list[QueueItem]:
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        sql = f"SELECT {_COLUMNS} FROM queue_items"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY scheduled_for ASC, priority_score DESC"

        with self.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._from_row(r) for r in rows]

    def count_by_status(self) -> dict[QueueStatus, int]:
        counts = {status: 0 for status in QueueStatus}
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM queue_items GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[QueueStatus(row["status"])] = row["n"]
        return counts

    def delete(self, item_id: str) -> bool:
        """Delete a terminal item.

        Returns:
            True if deleted, False if missing or not terminal.
        """
        terminal = [s.value for s in QueueStatus if s.is_terminal]
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM queue_items WHERE id = ? AND status IN (?, ?, ?)",
                (item_id, *terminal),
            )
        if cursor.rowcount == 0:
            logger.debug(f"Nothing deleted for {item_id} (missing or not terminal)")
            return False
        return True


def create_store(backend: str, path: Path | None = None) -> InMemoryQueueStore | SqliteQueueStore:
    """Build a queue store from configuration values.

    Args:
        backend: "memory" or "sqlite".
        path: Snapshot file (memory) or database file (sqlite).

    Raises:
        ConfigurationError: If the backend is unknown or sqlite has no path.
    """
    if backend == "sqlite":
        if path is None:
            raise ConfigurationError(
                "sqlite backend requires a database path", config_key="store.path"
            )
        return SqliteQueueStore(path)
    if backend == "memory":
        return InMemoryQueueStore(persistence_path=path)
    raise ConfigurationError(f"Unknown store backend: {backend}", config_key="store.backend")


# Export all public symbols
__all__ = [
    "InMemoryQueueStore",
    "SqliteQueueStore",
    "create_store",
    "SCHEMA_SQL",
]
