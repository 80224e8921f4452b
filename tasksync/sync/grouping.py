"""Group the canonical task set into per-day buckets for presentation."""

from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any

from ..models import Task

PAST_BUCKET = "past"


@dataclass
class TaskGroup:
    """Tasks due on one calendar day, or all overdue days collapsed."""

    key: str  # ISO day ("2024-01-02") or "past"
    tasks: list[Task] = field(default_factory=list)

    @property
    def is_past(self) -> bool:
        return self.key == PAST_BUCKET


@dataclass
class TaskView:
    """The canonical, grouped and sorted view handed to presentation."""

    groups: list[TaskGroup] = field(default_factory=list)

    @property
    def tasks(self) -> list[Task]:
        """All tasks in display order."""
        return [task for group in self.groups for task in group.tasks]

    def __len__(self) -> int:
        return sum(len(group.tasks) for group in self.groups)

    def get(self, task_id: int) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def group(self, key: str) -> TaskGroup | None:
        for group in self.groups:
            if group.key == key:
                return group
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": len(self),
            "groups": [
                {
                    "key": group.key,
                    "tasks": [
                        {**task.to_dict(), "synced": task.synced}
                        for task in group.tasks
                    ],
                }
                for group in self.groups
            ],
        }


def group_tasks(
    tasks: list[Task],
    today: date | None = None,
    tz: tzinfo | None = None,
) -> TaskView:
    """Bucket tasks by calendar day of their due date.

    Days before ``today`` collapse into a single "past" bucket, placed last.
    Day buckets are in ascending day order and each bucket is sorted
    ascending by due time.

    Args:
        tasks: Canonical task set.
        today: Reference day (defaults to the current day in ``tz``).
        tz: Timezone defining calendar days (defaults to local time).
    """
    if today is None:
        today = datetime.now(tz).date()

    buckets: dict[str, list[Task]] = {}
    for task in tasks:
        day = task.date.astimezone(tz).date()
        key = day.isoformat() if day >= today else PAST_BUCKET
        buckets.setdefault(key, []).append(task)

    day_keys = sorted(key for key in buckets if key != PAST_BUCKET)
    if PAST_BUCKET in buckets:
        day_keys.append(PAST_BUCKET)

    return TaskView(
        groups=[
            TaskGroup(key=key, tasks=sorted(buckets[key], key=lambda t: (t.date, t.id)))
            for key in day_keys
        ]
    )
