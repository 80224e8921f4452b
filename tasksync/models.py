"""Task record shared by the local store, remote store and reconciler."""

import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from .errors import TaskValidationError

_last_id = 0


def new_task_id() -> int:
    """Generate a fresh client-side task id.

    Ids are millisecond timestamps, bumped by one whenever two ids would
    collide, so they are strictly increasing within a process.
    """
    global _last_id
    candidate = time.time_ns() // 1_000_000
    if candidate <= _last_id:
        candidate = _last_id + 1
    _last_id = candidate
    return candidate


def parse_date(value: Any) -> datetime:
    """Coerce a datetime or ISO-8601 string into an aware UTC datetime.

    Naive values are interpreted as local time.

    Raises:
        TaskValidationError: If the value is missing or malformed.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise TaskValidationError(f"Malformed task date: {value!r}") from e
    else:
        raise TaskValidationError(f"Task date is required, got {value!r}")

    return dt.astimezone(timezone.utc)


@dataclass
class Task:
    """A single task.

    ``synced`` is local bookkeeping: True only once the remote store has
    durably accepted this exact state. It is never sent over the wire.
    """

    id: int
    title: str
    date: datetime
    completed: bool = False
    synced: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.id, int) or isinstance(self.id, bool):
            raise TaskValidationError(f"Task id must be an integer, got {self.id!r}")
        if not isinstance(self.title, str) or not self.title.strip():
            raise TaskValidationError("Task title must be a non-empty string")
        self.title = self.title.strip()
        self.date = parse_date(self.date)
        self.completed = bool(self.completed)
        self.synced = bool(self.synced)

    def same_content(self, other: "Task") -> bool:
        """True if title, date and completed match (ids and sync flag ignored)."""
        return (
            self.title == other.title
            and self.date == other.date
            and self.completed == other.completed
        )

    def with_changes(self, **changes: Any) -> "Task":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire form used by the remote API."""
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date.isoformat(),
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], synced: bool = True) -> "Task":
        """Create from a wire dictionary.

        Tasks read from the remote are synced by definition.
        """
        try:
            task_id = data["id"]
            title = data["title"]
            date = data["date"]
        except (KeyError, TypeError) as e:
            raise TaskValidationError(f"Task record missing field: {e}") from e

        return cls(
            id=task_id,
            title=title,
            date=date,
            completed=data.get("completed", False),
            synced=synced,
        )
