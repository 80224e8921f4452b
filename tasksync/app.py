"""Application wiring: stores, connectivity, reconciler and notifier."""

import asyncio
import logging

from .config import Config
from .models import Task
from .notify import LoggingNotifier, MQTTNotifier, NotificationKind, Notifier
from .store import HttpRemoteStore, LocalStore, RemoteStore
from .sync import ConnectivityEvent, ConnectivityMonitor, Reconciler, ReconcileResult, TaskView

logger = logging.getLogger(__name__)


class TaskApp:
    """Coordinates the task stores and keeps the canonical view current."""

    def __init__(
        self,
        config: Config,
        local: LocalStore | None = None,
        remote: RemoteStore | None = None,
        notifier: Notifier | None = None,
    ):
        self.config = config
        self._running = False
        self._stop_event = asyncio.Event()
        self._sync_loop_task: asyncio.Task | None = None

        self.local = local or LocalStore(config.storage.db_path)
        self.remote = remote or HttpRemoteStore(
            config.remote.url,
            timeout=config.remote.timeout_seconds,
            max_retries=config.remote.max_retries,
            backoff_seconds=config.remote.backoff_seconds,
        )

        if notifier is not None:
            self.notifier = notifier
        elif config.notify.backend == "mqtt":
            self.notifier = MQTTNotifier(config.notify.mqtt)
        else:
            self.notifier = LoggingNotifier()

        probe = None
        if not config.connectivity.force_offline:
            probe = self.remote.health_check

        self.connectivity = ConnectivityMonitor(
            probe=probe,
            probe_interval=config.connectivity.probe_interval_seconds,
        )
        self.reconciler = Reconciler(
            local=self.local,
            remote=self.remote,
            connectivity=self.connectivity,
            notifier=self.notifier,
            tombstone_ttl_days=config.sync.tombstone_ttl_days,
        )
        self.connectivity.on_transition(self._handle_transition)

    @property
    def view(self) -> TaskView:
        return self.reconciler.view

    async def _handle_transition(self, event: ConnectivityEvent) -> None:
        if event == ConnectivityEvent.WENT_ONLINE:
            self.reconciler.schedule_reconcile()
            await self.notifier.notify(NotificationKind.ONLINE, "Connection restored")
        else:
            await self.notifier.notify(
                NotificationKind.OFFLINE,
                "You are offline; new tasks will sync when the connection returns",
            )

    async def open(self) -> ReconcileResult:
        """Connect the local store, detect connectivity and load the view."""
        self.local.connect()

        await self.connectivity.prime()

        logger.info(f"TaskApp opened (online={self.connectivity.online})")
        return await self.reconciler.reconcile()

    async def close(self) -> None:
        """Wait for in-flight passes and release resources."""
        await self.reconciler.wait_idle()
        await self.remote.close()
        await self.notifier.close()
        self.local.close()

    async def start(self) -> None:
        """Run until stopped: probe connectivity and sync periodically."""
        logger.info(f"Starting tasksync client: {self.config.node.name}")
        await self.open()

        if self.config.connectivity.probe_enabled:
            await self.connectivity.start()
        self._sync_loop_task = asyncio.create_task(
            self._sync_loop(self.config.sync.sync_interval_minutes * 60)
        )
        self._running = True
        logger.info("tasksync client started")

        await self._stop_event.wait()

    async def stop(self) -> None:
        """Stop background loops and close."""
        logger.info("Stopping tasksync client...")
        self._running = False
        self._stop_event.set()

        await self.connectivity.stop()
        if self._sync_loop_task:
            await self._sync_loop_task
            self._sync_loop_task = None

        await self.close()
        logger.info("tasksync client stopped")

    async def _sync_loop(self, interval_seconds: float) -> None:
        """Retry unsynced work on a fixed interval while online."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                break  # Stop event was set
            except asyncio.TimeoutError:
                pass  # Normal timeout, run a pass

            if self.connectivity.online:
                await self.reconciler.reconcile()

    # ==================== User actions ====================

    async def add_task(self, title: str, date, completed: bool = False) -> Task:
        return await self.reconciler.add_task(title, date, completed=completed)

    async def complete_task(self, task_id: int) -> TaskView:
        return await self.reconciler.complete_task(task_id)

    async def delete_task(self, task_id: int) -> TaskView:
        return await self.reconciler.delete_task(task_id)

    async def sync(self) -> ReconcileResult:
        return await self.reconciler.reconcile()
