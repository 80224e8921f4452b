"""Single owner of the online/offline flag.

Emits discrete transition events instead of letting every caller poll
network state on its own.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ConnectivityEvent(Enum):
    """Edge-triggered connectivity transitions."""

    WENT_ONLINE = "went-online"
    WENT_OFFLINE = "went-offline"


TransitionCallback = Callable[[ConnectivityEvent], Awaitable[None] | None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Tracks connectivity and notifies listeners on genuine transitions.

    Repeated identical signals are ignored, so listeners never see two
    WENT_ONLINE events in a row.
    """

    def __init__(
        self,
        probe: Probe | None = None,
        probe_interval: float = 30.0,
        initial_online: bool = False,
    ):
        """Initialize the monitor.

        Args:
            probe: Async callable returning True when the remote is reachable.
            probe_interval: Seconds between probes in the background loop.
            initial_online: Starting state, before any probe has run.
        """
        self._probe = probe
        self._probe_interval = probe_interval
        self._online = initial_online
        self._listeners: list[TransitionCallback] = []
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def online(self) -> bool:
        """Current best-effort connectivity state."""
        return self._online

    def on_transition(self, callback: TransitionCallback) -> None:
        """Register a listener for connectivity transitions."""
        self._listeners.append(callback)

    async def set_online(self, online: bool) -> bool:
        """Record a connectivity signal.

        Args:
            online: Observed state.

        Returns:
            True if this was a transition and listeners were notified.
        """
        if online == self._online:
            return False

        self._online = online
        event = ConnectivityEvent.WENT_ONLINE if online else ConnectivityEvent.WENT_OFFLINE
        logger.info(f"Connectivity changed: {event.value}")

        for callback in list(self._listeners):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Connectivity listener failed on {event.value}: {e}", exc_info=True)

        return True

    async def check(self) -> bool:
        """Run the probe once and record the result.

        Returns:
            The observed connectivity state.
        """
        if self._probe is None:
            return self._online

        try:
            reachable = bool(await self._probe())
        except Exception as e:
            logger.debug(f"Connectivity probe raised: {e}")
            reachable = False

        await self.set_online(reachable)
        return reachable

    async def prime(self) -> bool:
        """Probe once and adopt the result without notifying listeners.

        Used at startup, where the initial state is not a transition.
        """
        if self._probe is not None:
            try:
                self._online = bool(await self._probe())
            except Exception as e:
                logger.debug(f"Connectivity probe raised: {e}")
                self._online = False
        return self._online

    async def start(self) -> None:
        """Start probing in the background."""
        if self._running or self._probe is None:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Connectivity monitor started (interval={self._probe_interval}s)")

    async def stop(self) -> None:
        """Stop the background probe loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Connectivity monitor stopped")

    async def _run_loop(self) -> None:
        """Probe loop."""
        while self._running:
            await self.check()
            await asyncio.sleep(self._probe_interval)
