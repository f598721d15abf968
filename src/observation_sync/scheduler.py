"""
scheduler.py - Background drain loop.

Re-runs drains while operations remain:
- Periodic drains at a fixed interval
- Exponential backoff while a drain leaves items behind
- Connectivity probing before each drain
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from observation_sync.context import SyncContext
from observation_sync.engine import DrainResult

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    WAITING_RETRY = "waiting_retry"
    OFFLINE = "offline"
    STOPPED = "stopped"


class DrainScheduler:
    """
    Background scheduler for periodic queue drains.

    Pending operations are never dropped: the backoff only spaces out
    drain attempts, capped at retry_max_seconds.
    """

    def __init__(
        self,
        context: SyncContext,
        interval_seconds: float = 60.0,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 300.0,
        probe: bool = True,
        on_status_change: Optional[Callable[[SyncStatus], None]] = None,
        on_drain_complete: Optional[Callable[[DrainResult], None]] = None,
    ):
        self.context = context
        self.interval = interval_seconds
        self.retry_base = retry_base_seconds
        self.retry_max = retry_max_seconds
        self.probe = probe
        self.on_status_change = on_status_change
        self.on_drain_complete = on_drain_complete

        self._status = SyncStatus.STOPPED
        self._failures = 0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def status(self) -> SyncStatus:
        return self._status

    def next_delay(self) -> float:
        """Seconds until the next drain attempt."""
        if self._failures == 0:
            return self.interval
        return min(self.retry_base * (2 ** (self._failures - 1)), self.retry_max)

    async def start(self) -> None:
        """Start the background loop."""
        if self._task is not None and not self._task.done():
            return
        self._stop_event = asyncio.Event()
        self._set_status(SyncStatus.IDLE)
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"DrainScheduler started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the background loop."""
        self._stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._set_status(SyncStatus.STOPPED)
        logger.info("DrainScheduler stopped")

    async def run_once(self) -> DrainResult:
        """Probe connectivity if configured, then drain once."""
        gate = self.context.gate
        reconnect = None
        if self.probe:
            online = await self.context.remote.ping()
            # A reconnect starts its own drain, which stands for this round
            reconnect = gate.set_online(online)

        if not gate.is_online():
            self._set_status(SyncStatus.OFFLINE)
            self._failures += 1
            return await self.context.drain_queue()

        self._set_status(SyncStatus.SYNCING)
        if reconnect is not None:
            result = await asyncio.shield(reconnect)
        else:
            result = await self.context.drain_queue()

        if result.remaining:
            self._failures += 1
            self._set_status(SyncStatus.WAITING_RETRY)
            logger.info(
                f"{result.remaining} operations remain, retrying in {self.next_delay()}s"
            )
        else:
            self._failures = 0
            self._set_status(SyncStatus.IDLE)

        if self.on_drain_complete:
            self.on_drain_complete(result)
        return result

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.next_delay())
            except asyncio.TimeoutError:
                continue

    def _set_status(self, status: SyncStatus) -> None:
        if self._status != status:
            self._status = status
            if self.on_status_change:
                self.on_status_change(status)
