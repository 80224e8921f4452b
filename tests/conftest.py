"""Shared fixtures: in-memory stores and a scriptable remote."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from tasksync.errors import RemoteStoreError
from tasksync.models import Task
from tasksync.notify import NotificationKind, Notifier
from tasksync.store import LocalStore, RemoteStore
from tasksync.sync import ConnectivityMonitor, Reconciler


class FakeRemoteStore(RemoteStore):
    """In-memory remote with per-task failure injection and call recording."""

    def __init__(self):
        self.tasks: dict[int, Task] = {}
        self.calls: list[tuple[str, int | None]] = []
        self.fail_all = False
        self.fail_put_ids: set[int] = set()
        self.fail_delete_ids: set[int] = set()
        self.put_delay = 0.0
        self.after_put = None

    def _record(self, op: str, task_id: int | None = None) -> None:
        self.calls.append((op, task_id))
        if self.fail_all:
            raise RemoteStoreError(f"{op} failed: network unreachable")

    def count(self, op: str, task_id: int | None = None) -> int:
        return sum(
            1 for name, tid in self.calls
            if name == op and (task_id is None or tid == task_id)
        )

    async def put(self, task: Task) -> None:
        self._record("put", task.id)
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if task.id in self.fail_put_ids:
            raise RemoteStoreError(f"put of {task.id} rejected")
        self.tasks[task.id] = task.with_changes(synced=True)
        if self.after_put is not None:
            await self.after_put(task)

    async def get_all(self) -> list[Task]:
        self._record("get_all")
        return [task.with_changes(synced=True) for task in self.tasks.values()]

    async def delete(self, task_id: int) -> None:
        self._record("delete", task_id)
        if task_id in self.fail_delete_ids:
            raise RemoteStoreError(f"delete of {task_id} rejected")
        self.tasks.pop(task_id, None)

    async def mark_completed(self, task_id: int) -> None:
        self._record("mark_completed", task_id)
        if task_id not in self.tasks:
            raise RemoteStoreError(f"Task {task_id} not found", status_code=404)
        self.tasks[task_id] = self.tasks[task_id].with_changes(completed=True)


class RecordingNotifier(Notifier):
    """Notifier that keeps every event for assertions."""

    def __init__(self):
        self.events: list[tuple[NotificationKind, str]] = []

    async def notify(self, kind: NotificationKind, message: str) -> None:
        self.events.append((kind, message))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.events]


TODAY = date(2024, 1, 1)


def make_task(task_id: int, title: str = "Task", day: int = 1, hour: int = 10, **kwargs) -> Task:
    """Build a task due on January `day`, 2024 at `hour` UTC."""
    return Task(
        id=task_id,
        title=title,
        date=datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc),
        **kwargs,
    )


@pytest.fixture
def local():
    """Create an in-memory LocalStore."""
    store = LocalStore(":memory:")
    store.connect()
    yield store
    store.close()


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def connectivity():
    """Connectivity monitor that starts offline."""
    return ConnectivityMonitor(initial_online=False)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def reconciler(local, remote, connectivity, notifier):
    """Reconciler with UTC calendar days and a fixed 'today'."""
    return Reconciler(
        local=local,
        remote=remote,
        connectivity=connectivity,
        notifier=notifier,
        tz=timezone.utc,
        today=lambda: TODAY,
    )
