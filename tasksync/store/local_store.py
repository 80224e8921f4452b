"""Durable local SQLite storage for tasks and pending-delete tombstones."""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from ..errors import LocalStoreError
from ..models import Task

logger = logging.getLogger(__name__)

# SQL schema for the local task database
SCHEMA = """
-- Tasks keyed by client-generated id
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    date TEXT NOT NULL,
    completed INTEGER NOT NULL DEFAULT 0,
    synced INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_synced ON tasks(synced);
CREATE INDEX IF NOT EXISTS idx_tasks_date ON tasks(date);

-- Ids deleted locally whose remote copy has not been deleted yet
CREATE TABLE IF NOT EXISTS tombstones (
    task_id INTEGER PRIMARY KEY,
    deleted_at TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalStore:
    """SQLite-backed task store that works with no network.

    Every write is committed before returning, so state survives restarts.
    All sqlite3 failures surface as LocalStoreError.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._in_memory = str(db_path) == ":memory:"
        self.db_path = Path(db_path) if self._in_memory else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        try:
            if not self._in_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            self._conn = None
            raise LocalStoreError(f"Failed to open local store {self.db_path}: {e}") from e

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        conn = self._ensure_connected()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise LocalStoreError(f"Local store write failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = self._ensure_connected()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Local store read failed: {e}") from e

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        """Decode a row, raising LocalStoreError if it is corrupt."""
        try:
            return Task(
                id=row["id"],
                title=row["title"],
                date=datetime.fromisoformat(row["date"]),
                completed=bool(row["completed"]),
                synced=bool(row["synced"]),
            )
        except (TypeError, ValueError) as e:
            raise LocalStoreError(f"Corrupt task row {row['id']}: {e}") from e

    # ==================== Task Operations ====================

    def put(self, task: Task) -> None:
        """Insert or replace a task keyed by its id."""
        self._execute(
            """
            INSERT INTO tasks (id, title, date, completed, synced, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                date = excluded.date,
                completed = excluded.completed,
                synced = excluded.synced,
                updated_at = excluded.updated_at
            """,
            (
                task.id,
                task.title,
                task.date.isoformat(),
                int(task.completed),
                int(task.synced),
                _now(),
            ),
        )
        logger.debug(f"Stored task {task.id} (synced={task.synced})")

    def get(self, task_id: int) -> Task | None:
        """Get a single task by id, or None if absent."""
        rows = self._query(
            "SELECT id, title, date, completed, synced FROM tasks WHERE id = ?",
            (task_id,),
        )
        return self._row_to_task(rows[0]) if rows else None

    def get_all(self) -> list[Task]:
        """Get every stored task, ordered by id.

        Corrupt rows are skipped with a warning so one bad record does not
        hide the rest of the list.
        """
        rows = self._query(
            "SELECT id, title, date, completed, synced FROM tasks ORDER BY id"
        )
        tasks = []
        for row in rows:
            try:
                tasks.append(self._row_to_task(row))
            except LocalStoreError as e:
                logger.warning(f"Skipping {e}")
        return tasks

    def delete(self, task_id: int) -> bool:
        """Delete a task.

        Returns:
            True if a row was removed.
        """
        cursor = self._execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def mark_completed(self, task_id: int, synced: bool = False) -> bool:
        """Mark a task completed.

        Completion is one-way; there is no operation that clears it.

        Args:
            task_id: Task to complete.
            synced: Whether the remote already holds the completed state.

        Returns:
            True if the task exists.
        """
        cursor = self._execute(
            "UPDATE tasks SET completed = 1, synced = ?, updated_at = ? WHERE id = ?",
            (int(synced), _now(), task_id),
        )
        return cursor.rowcount > 0

    # ==================== Tombstones ====================

    def add_tombstone(self, task_id: int) -> None:
        """Record that a task was deleted locally but not yet remotely."""
        self._execute(
            "INSERT OR REPLACE INTO tombstones (task_id, deleted_at) VALUES (?, ?)",
            (task_id, _now()),
        )

    def get_tombstones(self) -> list[int]:
        """Get ids awaiting remote deletion, oldest first."""
        rows = self._query("SELECT task_id FROM tombstones ORDER BY deleted_at")
        return [row["task_id"] for row in rows]

    def clear_tombstone(self, task_id: int) -> None:
        """Forget a tombstone once the remote copy is gone."""
        self._execute("DELETE FROM tombstones WHERE task_id = ?", (task_id,))

    def prune_tombstones(self, days: int) -> int:
        """Delete tombstones older than the given age.

        Returns:
            Number of tombstones removed.
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        cursor = self._execute(
            "DELETE FROM tombstones WHERE deleted_at < ?", (cutoff,)
        )
        pruned = cursor.rowcount
        if pruned > 0:
            logger.info(f"Pruned {pruned} tombstones older than {days} days")
        return pruned

    # ==================== Stats ====================

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        row = self._query(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN synced = 0 THEN 1 ELSE 0 END), 0) AS unsynced,
                COALESCE(SUM(completed), 0) AS completed
            FROM tasks
            """
        )[0]
        stats: dict[str, Any] = {
            "total_tasks": row["total"],
            "unsynced_tasks": row["unsynced"],
            "completed_tasks": row["completed"],
            "tombstones": self._query("SELECT COUNT(*) AS n FROM tombstones")[0]["n"],
        }

        if not self._in_memory and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
