"""Tests for the reconciliation engine."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeRemoteStore, RecordingNotifier, TODAY, make_task
from tasksync.errors import LocalStoreError, TaskNotFoundError, TaskValidationError
from tasksync.notify import NotificationKind
from tasksync.sync import PAST_BUCKET, Reconciler, SyncStatus


class TestOfflinePass:
    """Tests for passes while offline."""

    @pytest.mark.asyncio
    async def test_offline_pass_uses_local_only(self, reconciler, local, remote):
        """Test that an offline pass never contacts the remote."""
        local.put(make_task(1, "Buy milk"))

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.OFFLINE
        assert [t.id for t in result.view.tasks] == [1]
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_offline_pass_keeps_unsynced_flag(self, reconciler, local):
        local.put(make_task(1))

        await reconciler.reconcile()

        assert local.get(1).synced is False
        assert reconciler.view.get(1).synced is False

    @pytest.mark.asyncio
    async def test_view_is_grouped(self, reconciler, local):
        local.put(make_task(1, day=2))
        local.put(make_task(2, day=1))

        result = await reconciler.reconcile()

        assert [g.key for g in result.view.groups] == ["2024-01-01", "2024-01-02"]

    @pytest.mark.asyncio
    async def test_local_read_failure_keeps_previous_view(
        self, reconciler, local, monkeypatch
    ):
        """Test that a failing local read never blanks the view."""
        local.put(make_task(1))
        first = await reconciler.reconcile()

        def broken():
            raise LocalStoreError("disk I/O error")

        monkeypatch.setattr(local, "get_all", broken)

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.FAILED
        assert "disk I/O error" in result.error
        assert result.view is first.view
        assert [t.id for t in reconciler.view.tasks] == [1]

    @pytest.mark.asyncio
    async def test_corrupt_local_row_does_not_break_pass(self, reconciler, local):
        local.put(make_task(1))
        local.put(make_task(2))
        local._conn.execute("UPDATE tasks SET date = 'garbage' WHERE id = 1")
        local._conn.commit()

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.OFFLINE
        assert [t.id for t in result.view.tasks] == [2]


class TestOnlineMerge:
    """Tests for merging local and remote sets."""

    @pytest.mark.asyncio
    async def test_remote_only_task_adopted(self, reconciler, local, remote, connectivity):
        """Test that a remote-only task is persisted locally as synced."""
        remote.tasks[1] = make_task(1, "From phone", synced=True)
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.SUCCESS
        assert result.pulled == 1
        assert local.get(1).synced is True
        assert result.view.get(1).title == "From phone"

    @pytest.mark.asyncio
    async def test_local_wins_on_id_conflict(self, reconciler, local, remote, connectivity):
        """Test that an unsynced local copy overwrites the remote copy."""
        local.put(make_task(1, "local edit"))
        remote.tasks[1] = make_task(1, "remote edit", synced=True)
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.view.get(1).title == "local edit"
        assert remote.tasks[1].title == "local edit"
        assert local.get(1).synced is True

    @pytest.mark.asyncio
    async def test_synced_local_copy_shadows_remote(
        self, reconciler, local, remote, connectivity
    ):
        """A synced local copy is shown as-is even if the remote differs."""
        local.put(make_task(1, "local", synced=True))
        remote.tasks[1] = make_task(1, "remote", synced=True)
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.view.get(1).title == "local"
        assert remote.count("put") == 0

    @pytest.mark.asyncio
    async def test_view_is_union_of_both_stores(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)
        remote.tasks[2] = make_task(2, synced=True)
        local.put(make_task(3))
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert sorted(t.id for t in result.view.tasks) == [1, 2, 3]
        assert sorted(remote.tasks) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, reconciler, local, remote, connectivity):
        """Test that a second pass with no changes does no work."""
        local.put(make_task(1))
        remote.tasks[2] = make_task(2, synced=True)
        await connectivity.set_online(True)

        first = await reconciler.reconcile()
        second = await reconciler.reconcile()

        assert second.status == SyncStatus.SUCCESS
        assert second.pushed == 0
        assert second.pulled == 0
        assert second.view.to_dict() == first.view.to_dict()
        assert remote.count("put") == 1

    @pytest.mark.asyncio
    async def test_remote_read_failure_shows_local_view(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1))
        remote.fail_all = True
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.FAILED
        assert result.error
        assert [t.id for t in result.view.tasks] == [1]
        assert local.get(1).synced is False

    @pytest.mark.asyncio
    async def test_unchanged_remote_copy_not_pushed_again(
        self, reconciler, local, remote, connectivity
    ):
        """An unsynced task whose content the remote already holds is just marked synced."""
        local.put(make_task(1, "same"))
        remote.tasks[1] = make_task(1, "same", synced=True)
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert remote.count("put") == 0
        assert result.pushed == 1
        assert local.get(1).synced is True


class TestPush:
    """Tests for pushing unsynced tasks."""

    @pytest.mark.asyncio
    async def test_unsynced_tasks_pushed(self, reconciler, local, remote, connectivity):
        local.put(make_task(1))
        local.put(make_task(2))
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.pushed == 2
        assert sorted(remote.tasks) == [1, 2]
        assert all(t.synced for t in local.get_all())

    @pytest.mark.asyncio
    async def test_push_failure_isolated_per_task(
        self, reconciler, local, remote, connectivity
    ):
        """Test that one rejected push does not block the others."""
        for task_id in (1, 2, 3):
            local.put(make_task(task_id))
        remote.fail_put_ids = {2}
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.PARTIAL
        assert result.pushed == 2
        assert result.failed == 1
        assert local.get(1).synced is True
        assert local.get(2).synced is False
        assert local.get(3).synced is True
        assert result.view.get(2) is not None

    @pytest.mark.asyncio
    async def test_failed_push_retried_next_pass(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1))
        remote.fail_put_ids = {1}
        await connectivity.set_online(True)
        await reconciler.reconcile()

        remote.fail_put_ids = set()
        result = await reconciler.reconcile()

        assert result.status == SyncStatus.SUCCESS
        assert result.pushed == 1
        assert local.get(1).synced is True
        assert 1 in remote.tasks

    @pytest.mark.asyncio
    async def test_going_offline_mid_pass_stops_pushing(
        self, reconciler, local, remote, connectivity
    ):
        """Test that remaining tasks stay unsynced once connectivity drops."""
        for task_id in (1, 2, 3):
            local.put(make_task(task_id))

        async def drop_connection(task):
            await connectivity.set_online(False)

        remote.after_put = drop_connection
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert result.status == SyncStatus.PARTIAL
        assert result.pushed == 1
        assert remote.count("put") == 1
        assert local.get(1).synced is True
        assert local.get(2).synced is False
        assert local.get(3).synced is False

    @pytest.mark.asyncio
    async def test_concurrent_passes_push_once(
        self, reconciler, local, remote, connectivity
    ):
        """Test that overlapping passes never push the same task twice."""
        local.put(make_task(1))
        remote.put_delay = 0.05
        await connectivity.set_online(True)

        results = await asyncio.gather(reconciler.reconcile(), reconciler.reconcile())

        assert remote.count("put", 1) == 1
        assert sum(r.pushed for r in results) == 1
        assert local.get(1).synced is True

    @pytest.mark.asyncio
    async def test_schedule_drops_trigger_while_pending(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1))
        await connectivity.set_online(True)

        first = reconciler.schedule_reconcile()
        second = reconciler.schedule_reconcile()
        await reconciler.wait_idle()

        assert first is second
        assert remote.count("get_all") == 1
        assert reconciler.last_result.status == SyncStatus.SUCCESS


class TestAddTask:
    """Tests for the add path."""

    @pytest.mark.asyncio
    async def test_add_offline(self, reconciler, local, remote, notifier):
        task = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")

        assert task.synced is False
        assert local.get(task.id).title == "Buy milk"
        assert remote.calls == []
        assert reconciler.view.get(task.id) is not None
        assert NotificationKind.TASK_ADDED in notifier.kinds()

    @pytest.mark.asyncio
    async def test_add_online(self, reconciler, local, remote, connectivity):
        await connectivity.set_online(True)

        task = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")

        assert task.synced is True
        assert local.get(task.id).synced is True
        assert remote.tasks[task.id].title == "Buy milk"
        assert remote.count("put") == 1

    @pytest.mark.asyncio
    async def test_add_online_remote_failure_saved_unsynced(
        self, reconciler, local, remote, connectivity
    ):
        """Test that a failed remote add still keeps the task locally."""
        remote.fail_all = True
        await connectivity.set_online(True)

        task = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")

        assert task.synced is False
        assert local.get(task.id).synced is False
        assert reconciler.view.get(task.id) is not None

        remote.fail_all = False
        result = await reconciler.reconcile()

        assert result.pushed == 1
        assert local.get(task.id).synced is True

    @pytest.mark.asyncio
    async def test_add_reuses_identical_remote_task(
        self, reconciler, local, remote, connectivity
    ):
        """Test that a retried add adopts the remote id instead of duplicating."""
        remote.tasks[5] = make_task(5, "Buy milk", synced=True)
        await connectivity.set_online(True)

        task = await reconciler.add_task(
            "Buy milk", datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        )

        assert task.id == 5
        assert task.synced is True
        assert remote.count("put") == 0
        assert [t.id for t in local.get_all()] == [5]

    @pytest.mark.asyncio
    async def test_add_ignores_remote_copy_pending_delete(
        self, reconciler, local, remote, connectivity
    ):
        """Test that a re-added task never adopts an id awaiting remote deletion."""
        local.put(make_task(1, "Buy milk", synced=True))
        remote.tasks[1] = make_task(1, "Buy milk", synced=True)
        remote.fail_delete_ids = {1}
        await connectivity.set_online(True)
        await reconciler.delete_task(1)
        assert local.get_tombstones() == [1]

        remote.fail_delete_ids = set()
        task = await reconciler.add_task(
            "Buy milk", datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        )
        await reconciler.reconcile()

        assert task.id != 1
        assert 1 not in remote.tasks
        for stored in local.get_all():
            assert not (stored.synced and stored.id not in remote.tasks)
        assert remote.tasks[task.id].title == "Buy milk"

    @pytest.mark.asyncio
    async def test_second_identical_add_keeps_both(
        self, reconciler, local, remote, connectivity
    ):
        """Test that adding the same task twice online creates two tasks."""
        await connectivity.set_online(True)

        first = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")
        second = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")

        assert first.id != second.id
        assert sorted(t.id for t in local.get_all()) == sorted([first.id, second.id])
        assert sorted(remote.tasks) == sorted([first.id, second.id])

    @pytest.mark.asyncio
    async def test_add_validation_touches_no_store(self, reconciler, local, remote):
        with pytest.raises(TaskValidationError):
            await reconciler.add_task("", "2024-01-01T10:00:00Z")

        with pytest.raises(TaskValidationError):
            await reconciler.add_task("Buy milk", "someday")

        assert local.get_all() == []
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_offline_add_creates_one_remote_task(
        self, reconciler, remote, connectivity
    ):
        """Test that repeated passes after reconnecting never duplicate a task."""
        task = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")
        await connectivity.set_online(True)

        await reconciler.reconcile()
        await reconciler.reconcile()
        await reconciler.reconcile()

        assert list(remote.tasks) == [task.id]
        assert remote.count("put") == 1


class TestCompleteTask:
    """Tests for the completion path."""

    @pytest.mark.asyncio
    async def test_complete_online(self, reconciler, local, remote, connectivity, notifier):
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)
        await connectivity.set_online(True)

        view = await reconciler.complete_task(1)

        assert view.get(1).completed is True
        assert remote.tasks[1].completed is True
        assert local.get(1).synced is True
        assert remote.count("mark_completed", 1) == 1
        assert NotificationKind.TASK_UPDATED in notifier.kinds()

    @pytest.mark.asyncio
    async def test_complete_offline_syncs_later(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)

        await reconciler.complete_task(1)

        task = local.get(1)
        assert task.completed is True
        assert task.synced is False
        assert remote.tasks[1].completed is False

        await connectivity.set_online(True)
        await reconciler.reconcile()

        assert remote.tasks[1].completed is True
        assert local.get(1).synced is True

    @pytest.mark.asyncio
    async def test_complete_missing_task(self, reconciler):
        with pytest.raises(TaskNotFoundError):
            await reconciler.complete_task(404)

    @pytest.mark.asyncio
    async def test_complete_unknown_to_remote_is_pushed(
        self, reconciler, local, remote, connectivity
    ):
        """A task the remote never saw is pushed as completed on the next pass."""
        local.put(make_task(1))
        await connectivity.set_online(True)

        view = await reconciler.complete_task(1)

        assert view.get(1).completed is True
        assert remote.tasks[1].completed is True
        assert local.get(1).synced is True

    @pytest.mark.asyncio
    async def test_complete_already_synced_is_noop_remotely(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1, completed=True, synced=True))
        remote.tasks[1] = make_task(1, completed=True, synced=True)
        await connectivity.set_online(True)

        await reconciler.complete_task(1)

        assert remote.count("mark_completed") == 0
        assert local.get(1).synced is True


class TestDeleteTask:
    """Tests for the delete path."""

    @pytest.mark.asyncio
    async def test_delete_online(self, reconciler, local, remote, connectivity, notifier):
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)
        await connectivity.set_online(True)

        view = await reconciler.delete_task(1)

        assert view.get(1) is None
        assert local.get(1) is None
        assert 1 not in remote.tasks
        assert local.get_tombstones() == []
        assert NotificationKind.TASK_DELETED in notifier.kinds()

    @pytest.mark.asyncio
    async def test_delete_offline_not_resurrected(
        self, reconciler, local, remote, connectivity
    ):
        """Test that an offline delete removes the remote copy on reconnect."""
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)

        view = await reconciler.delete_task(1)

        assert view.get(1) is None
        assert local.get_tombstones() == [1]
        assert remote.calls == []

        await connectivity.set_online(True)
        result = await reconciler.reconcile()

        assert result.tombstones_flushed == 1
        assert result.view.get(1) is None
        assert local.get(1) is None
        assert 1 not in remote.tasks
        assert local.get_tombstones() == []

    @pytest.mark.asyncio
    async def test_delete_remote_failure_leaves_tombstone(
        self, reconciler, local, remote, connectivity
    ):
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)
        remote.fail_delete_ids = {1}
        await connectivity.set_online(True)

        view = await reconciler.delete_task(1)

        assert view.get(1) is None
        assert local.get(1) is None
        assert local.get_tombstones() == [1]

        remote.fail_delete_ids = set()
        result = await reconciler.reconcile()

        assert result.tombstones_flushed == 1
        assert 1 not in remote.tasks

    @pytest.mark.asyncio
    async def test_tombstone_for_locally_held_id_not_flushed(
        self, reconciler, local, remote, connectivity
    ):
        """A tombstone whose id exists locally again is dropped, not sent."""
        local.put(make_task(1, synced=True))
        remote.tasks[1] = make_task(1, synced=True)
        local.add_tombstone(1)
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert remote.count("delete") == 0
        assert 1 in remote.tasks
        assert local.get_tombstones() == []
        assert result.view.get(1) is not None

    @pytest.mark.asyncio
    async def test_delete_missing_task(self, reconciler):
        with pytest.raises(TaskNotFoundError):
            await reconciler.delete_task(404)

    @pytest.mark.asyncio
    async def test_expired_tombstone_is_pruned(
        self, reconciler, local, remote, connectivity
    ):
        """Once a tombstone outlives its TTL, the remote copy is adopted again."""
        remote.tasks[1] = make_task(1, synced=True)
        local.add_tombstone(1)
        local._conn.execute(
            "UPDATE tombstones SET deleted_at = ?",
            ((datetime.now(timezone.utc) - timedelta(days=31)).isoformat(),),
        )
        local._conn.commit()
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert local.get_tombstones() == []
        assert result.tombstones_flushed == 0
        assert result.view.get(1) is not None


class TestNotifications:
    """Tests for events reported to the notifier."""

    @pytest.mark.asyncio
    async def test_sync_completed_only_when_work_done(
        self, reconciler, local, connectivity, notifier
    ):
        await connectivity.set_online(True)
        await reconciler.reconcile()

        assert NotificationKind.SYNC_COMPLETED not in notifier.kinds()

        local.put(make_task(1))
        await reconciler.reconcile()

        assert notifier.kinds().count(NotificationKind.SYNC_COMPLETED) == 1

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_break_mutations(self, local, remote, connectivity):
        class BrokenNotifier(RecordingNotifier):
            async def notify(self, kind, message):
                raise RuntimeError("notification daemon gone")

        reconciler = Reconciler(
            local=local,
            remote=remote,
            connectivity=connectivity,
            notifier=BrokenNotifier(),
            tz=timezone.utc,
            today=lambda: TODAY,
        )

        task = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")

        assert local.get(task.id) is not None


class TestEndToEnd:
    """Offline-first scenarios across connectivity changes."""

    @pytest.mark.asyncio
    async def test_buy_milk_offline_then_online(
        self, reconciler, local, remote, connectivity, notifier
    ):
        """Test the full offline add, reconnect, converge cycle."""
        task = await reconciler.add_task("Buy milk", "2024-01-01T10:00:00Z")

        today_group = reconciler.view.group("2024-01-01")
        assert [t.title for t in today_group.tasks] == ["Buy milk"]
        assert today_group.tasks[0].synced is False

        await connectivity.set_online(True)
        result = await reconciler.reconcile()

        assert result.status == SyncStatus.SUCCESS
        assert remote.tasks[task.id].title == "Buy milk"
        assert result.view.get(task.id).synced is True
        assert NotificationKind.SYNC_COMPLETED in notifier.kinds()

    @pytest.mark.asyncio
    async def test_past_tasks_collapse(self, reconciler, local, remote, connectivity):
        remote.tasks[1] = make_task(1, synced=True)
        remote.tasks[2] = make_task(2, day=3, synced=True)
        local.put(
            make_task(3, synced=True).with_changes(
                date=datetime(2023, 12, 25, 9, 0, tzinfo=timezone.utc)
            )
        )
        await connectivity.set_online(True)

        result = await reconciler.reconcile()

        assert [g.key for g in result.view.groups] == ["2024-01-01", "2024-01-03", PAST_BUCKET]

    @pytest.mark.asyncio
    async def test_two_clients_converge(self, connectivity):
        """Two clients sharing a remote end up with the same task set."""
        from tasksync.store import LocalStore

        shared = FakeRemoteStore()
        stores = [LocalStore(":memory:"), LocalStore(":memory:")]
        clients = [
            Reconciler(
                local=store,
                remote=shared,
                connectivity=connectivity,
                tz=timezone.utc,
                today=lambda: TODAY,
            )
            for store in stores
        ]

        await clients[0].add_task("From laptop", "2024-01-01T09:00:00Z")
        await clients[1].add_task("From phone", "2024-01-02T09:00:00Z")

        await connectivity.set_online(True)
        for client in clients + clients:
            await client.reconcile()

        titles = [sorted(t.title for t in client.view.tasks) for client in clients]
        assert titles[0] == titles[1] == ["From laptop", "From phone"]
        assert len(shared.tasks) == 2

        for store in stores:
            store.close()
