"""
connectivity.py - Online/offline gate.

The gate is the single place that decides whether a mutation talks to
the Remote Store or is deferred to the pending log. The hosting
environment reports transitions through set_online(); an
offline -> online transition starts one drain, never two at once.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from observation_sync.remote.base import RemoteStore

logger = logging.getLogger(__name__)


class Route(Enum):
    REMOTE = "remote"
    DEFER = "defer"


class ConnectivityGate:
    """
    Point-in-time connectivity signal.

    is_online() is a hint, not a guarantee: a remote call may still fail
    right after it returned True, and callers treat that like offline.
    """

    def __init__(self, online: bool = False):
        self._online = online
        self._on_reconnect: Callable[[], Awaitable[Any]] | None = None
        self._listeners: list[Callable[[bool], None]] = []
        self._drain_task: asyncio.Task | None = None

    def is_online(self) -> bool:
        return self._online

    def route(self) -> Route:
        return Route.REMOTE if self._online else Route.DEFER

    def on_reconnect(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """Register the coroutine function run on each offline -> online transition."""
        self._on_reconnect = callback

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> asyncio.Task | None:
        """
        Record the current connectivity state.

        Returns:
            The drain task started (or already running) on a transition
            to online, otherwise None
        """
        was_online = self._online
        self._online = online
        if was_online == online:
            return None

        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in list(self._listeners):
            listener(online)

        if online:
            return self._trigger_drain()
        return None

    async def probe(self, remote: RemoteStore) -> bool:
        """Ask the remote whether it answers and record the outcome."""
        online = await remote.ping()
        self.set_online(online)
        return online

    async def wait_idle(self) -> None:
        """Wait for a reconnect drain started by this gate, if any."""
        task = self._drain_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def _trigger_drain(self) -> asyncio.Task | None:
        if self._on_reconnect is None:
            return None
        if self._drain_task is not None and not self._drain_task.done():
            logger.debug("Drain already in flight, not starting another")
            return self._drain_task
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, reconnect drain deferred")
            return None
        self._drain_task = loop.create_task(self._on_reconnect())
        self._drain_task.add_done_callback(_log_task_failure)
        return self._drain_task


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Reconnect drain failed: {exc}")
