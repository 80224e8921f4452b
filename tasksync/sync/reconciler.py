"""Merge engine that keeps the local and remote task stores converging.

Each reconciliation pass reads the local store, and the remote store when
online, merges the two by task id, pushes unsynced tasks, and produces the
grouped canonical view. Passes and mutations are serialized on one lock so
no pass ever observes another's half-applied writes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Any, Callable

from ..errors import LocalStoreError, RemoteStoreError, TaskNotFoundError
from ..models import Task, new_task_id
from ..notify import NotificationKind, Notifier
from ..store import LocalStore, RemoteStore
from .connectivity import ConnectivityMonitor
from .grouping import TaskView, group_tasks

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Outcome of a reconciliation pass."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some pushes failed, retried next pass
    FAILED = "failed"
    OFFLINE = "offline"  # Local-only pass


@dataclass
class ReconcileResult:
    """Result of a reconciliation pass."""

    status: SyncStatus
    view: TaskView
    pushed: int = 0
    pulled: int = 0
    failed: int = 0
    tombstones_flushed: int = 0
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "pushed": self.pushed,
            "pulled": self.pulled,
            "failed": self.failed,
            "tombstones_flushed": self.tombstones_flushed,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class Reconciler:
    """Produces the canonical task view and drives convergence writes.

    Conflicts are resolved by existence-merge: a local task always wins over
    a remote task with the same id, and remote-only tasks are adopted. A task
    edited differently on two offline clients keeps whichever copy this
    client holds locally.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        notifier: Notifier | None = None,
        tombstone_ttl_days: int = 30,
        tz: tzinfo | None = None,
        today: Callable[[], date] | None = None,
    ):
        """Initialize the reconciler.

        Args:
            local: Durable local store, always available.
            remote: Remote store, only called while online.
            connectivity: Owner of the online flag.
            notifier: Receives task and sync events.
            tombstone_ttl_days: Age after which unflushed deletes are dropped.
            tz: Timezone defining calendar days in the view (default local).
            today: Clock for the "past" cutoff (default current day in tz).
        """
        self._local = local
        self._remote = remote
        self._connectivity = connectivity
        self._notifier = notifier
        self._tombstone_ttl_days = tombstone_ttl_days
        self._tz = tz
        self._today = today or (lambda: datetime.now(tz).date())

        self._lock = asyncio.Lock()
        self._view = TaskView()
        self._last_result: ReconcileResult | None = None
        self._scheduled: asyncio.Task | None = None

    @property
    def view(self) -> TaskView:
        """The most recent canonical view."""
        return self._view

    @property
    def last_result(self) -> ReconcileResult | None:
        return self._last_result

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _online(self) -> bool:
        # Best effort: the flag may flip right after this check.
        return self._connectivity.online

    def _build_view(self, tasks: list[Task]) -> TaskView:
        return group_tasks(tasks, today=self._today(), tz=self._tz)

    async def _notify(self, kind: NotificationKind, message: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(kind, message)
        except Exception as e:
            logger.error(f"Notifier failed for {kind.value}: {e}")

    # ==================== Reconciliation ====================

    async def reconcile(self) -> ReconcileResult:
        """Run one reconciliation pass.

        Concurrent callers queue on the pass lock. A pass never raises for
        store failures; the result carries the status and error instead.
        """
        async with self._lock:
            result = await self._run_pass()

        self._last_result = result
        if result.pushed or result.tombstones_flushed:
            await self._notify(
                NotificationKind.SYNC_COMPLETED,
                f"Synced {result.pushed} task(s), "
                f"removed {result.tombstones_flushed} remote deletion(s)",
            )
        return result

    def schedule_reconcile(self) -> asyncio.Task:
        """Schedule a background pass, dropping the trigger if one is pending.

        Returns:
            The task running the (possibly already scheduled) pass.
        """
        if self._scheduled is not None and not self._scheduled.done():
            logger.debug("Reconciliation already scheduled, dropping trigger")
            return self._scheduled

        self._scheduled = asyncio.create_task(self.reconcile())
        return self._scheduled

    async def wait_idle(self) -> None:
        """Wait for a scheduled background pass to finish."""
        if self._scheduled is not None:
            await asyncio.gather(self._scheduled, return_exceptions=True)

    async def _run_pass(self) -> ReconcileResult:
        """Read, merge, push and persist. Caller holds the lock."""
        try:
            local_tasks = self._local.get_all()
        except LocalStoreError as e:
            logger.error(f"Failed to read local store, keeping previous view: {e}")
            return ReconcileResult(status=SyncStatus.FAILED, view=self._view, error=str(e))

        if not self._online():
            self._view = self._build_view(local_tasks)
            logger.debug(f"Offline pass: {len(local_tasks)} local task(s)")
            return ReconcileResult(status=SyncStatus.OFFLINE, view=self._view)

        try:
            return await self._run_online_pass(local_tasks)
        except LocalStoreError as e:
            logger.error(f"Local store failed during sync, keeping previous view: {e}")
            return ReconcileResult(status=SyncStatus.FAILED, view=self._view, error=str(e))

    async def _run_online_pass(self, local_tasks: list[Task]) -> ReconcileResult:
        flushed = await self._flush_tombstones()
        tombstoned = set(self._local.get_tombstones())

        if not self._online():
            self._view = self._build_view(local_tasks)
            return ReconcileResult(
                status=SyncStatus.OFFLINE, view=self._view, tombstones_flushed=flushed
            )

        try:
            remote_tasks = await self._remote.get_all()
        except RemoteStoreError as e:
            logger.warning(f"Failed to fetch remote tasks, showing local view: {e}")
            self._view = self._build_view(local_tasks)
            return ReconcileResult(
                status=SyncStatus.FAILED,
                view=self._view,
                tombstones_flushed=flushed,
                error=str(e),
            )

        # Existence-merge: local first, then remote-only ids
        merged: dict[int, Task] = {task.id: task for task in local_tasks}
        remote_by_id = {task.id: task for task in remote_tasks}
        pulled = 0

        for remote_task in remote_tasks:
            if remote_task.id in merged or remote_task.id in tombstoned:
                continue
            adopted = remote_task.with_changes(synced=True)
            self._local.put(adopted)
            merged[adopted.id] = adopted
            pulled += 1

        pushed, failed, interrupted = await self._push_unsynced(merged, remote_by_id)

        self._view = self._build_view(list(merged.values()))

        if failed or interrupted:
            status = SyncStatus.PARTIAL
        else:
            status = SyncStatus.SUCCESS

        logger.info(
            f"Sync: {status.value}, pulled={pulled}, pushed={pushed}, "
            f"failed={failed}, tombstones_flushed={flushed}"
        )
        return ReconcileResult(
            status=status,
            view=self._view,
            pushed=pushed,
            pulled=pulled,
            failed=failed,
            tombstones_flushed=flushed,
        )

    async def _push_unsynced(
        self,
        merged: dict[int, Task],
        remote_by_id: dict[int, Task],
    ) -> tuple[int, int, bool]:
        """Push every unsynced task, isolating failures per task.

        Returns:
            Tuple of (pushed, failed, interrupted_by_going_offline).
        """
        pushed = 0
        failed = 0

        for task_id in sorted(merged):
            task = merged[task_id]
            if task.synced:
                continue

            if not self._online():
                logger.info("Went offline mid-pass, remaining tasks stay unsynced")
                return pushed, failed, True

            existing = remote_by_id.get(task_id)
            if existing is None or not existing.same_content(task):
                try:
                    await self._remote.put(task)
                except RemoteStoreError as e:
                    failed += 1
                    logger.warning(f"Push of task {task_id} failed, will retry: {e}")
                    continue

            synced_task = task.with_changes(synced=True)
            self._local.put(synced_task)
            merged[task_id] = synced_task
            pushed += 1

        return pushed, failed, False

    async def _flush_tombstones(self) -> int:
        """Propagate offline deletions to the remote store.

        Returns:
            Number of tombstones cleared.
        """
        self._local.prune_tombstones(self._tombstone_ttl_days)

        flushed = 0
        for task_id in self._local.get_tombstones():
            if not self._online():
                break
            if self._local.get(task_id) is not None:
                # The id was re-created locally, so the remote copy must stay
                self._local.clear_tombstone(task_id)
                continue
            try:
                await self._remote.delete(task_id)
            except RemoteStoreError as e:
                logger.warning(f"Remote delete of task {task_id} failed, will retry: {e}")
                continue
            self._local.clear_tombstone(task_id)
            flushed += 1

        return flushed

    # ==================== Mutations ====================

    async def add_task(
        self,
        title: str,
        date: datetime | str,
        completed: bool = False,
    ) -> Task:
        """Create a task locally, and remotely when online.

        Raises:
            TaskValidationError: If title or date are invalid.
            LocalStoreError: If the local write fails.
        """
        task = Task(
            id=new_task_id(),
            title=title,
            date=date,
            completed=completed,
            synced=self._online(),
        )

        async with self._lock:
            if self._online():
                task = await self._add_remote(task)
            else:
                task = task.with_changes(synced=False)
            self._local.put(task)

        logger.info(f"Added task {task.id} '{task.title}' (synced={task.synced})")
        await self._notify(NotificationKind.TASK_ADDED, f"Task '{task.title}' added")
        await self.reconcile()
        return task

    async def _add_remote(self, task: Task) -> Task:
        """Create the task remotely unless an identical one already exists.

        Client-generated ids cannot catch a retry after a partial failure, so
        the remote is checked for a task with the same title, date and
        completion state first; if found, its id is adopted. Ids this client
        already holds locally or has pending deletes for are never adopted.
        """
        try:
            remote_tasks = await self._remote.get_all()
            excluded = set(self._local.get_tombstones())
            excluded.update(t.id for t in self._local.get_all())
            match = next(
                (
                    rt for rt in remote_tasks
                    if rt.id not in excluded and rt.same_content(task)
                ),
                None,
            )
            if match is not None:
                logger.warning(
                    f"Remote already holds '{task.title}' as task {match.id}, reusing it"
                )
                return task.with_changes(id=match.id, synced=True)

            await self._remote.put(task)
            return task.with_changes(synced=True)
        except RemoteStoreError as e:
            logger.warning(f"Remote add of task {task.id} failed, will retry on sync: {e}")
            return task.with_changes(synced=False)

    async def complete_task(self, task_id: int) -> TaskView:
        """Mark a task completed in both stores.

        Raises:
            TaskNotFoundError: If the task is not in the local store.
            LocalStoreError: If the local write fails.
        """
        async with self._lock:
            task = self._local.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            if task.completed and task.synced:
                logger.debug(f"Task {task_id} already completed and synced")
            else:
                remote_ok = False
                if self._online():
                    try:
                        await self._remote.mark_completed(task_id)
                        remote_ok = True
                    except RemoteStoreError as e:
                        logger.warning(
                            f"Remote completion of task {task_id} failed, will retry: {e}"
                        )
                self._local.mark_completed(task_id, synced=remote_ok)

        await self._notify(NotificationKind.TASK_UPDATED, f"Task '{task.title}' completed")
        return (await self.reconcile()).view

    async def delete_task(self, task_id: int) -> TaskView:
        """Delete a task from both stores.

        When the remote delete cannot happen now, a tombstone is left so the
        next online pass deletes the remote copy instead of resurrecting it.

        Raises:
            TaskNotFoundError: If the task is not in the local store.
            LocalStoreError: If the local write fails.
        """
        async with self._lock:
            task = self._local.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            remote_deleted = False
            if self._online():
                try:
                    await self._remote.delete(task_id)
                    remote_deleted = True
                except RemoteStoreError as e:
                    logger.warning(f"Remote delete of task {task_id} failed, will retry: {e}")

            if not remote_deleted:
                self._local.add_tombstone(task_id)
            self._local.delete(task_id)

        await self._notify(NotificationKind.TASK_DELETED, f"Task '{task.title}' deleted")
        return (await self.reconcile()).view
