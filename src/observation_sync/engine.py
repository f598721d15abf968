"""
engine.py - Queue drain engine.

The SyncEngine reconciles the pending operation log with the Remote
Store:
- One sequential FIFO pass per drain, never two drains at once
- Failed items stay in the log, in place, for the next drain
- Full cache refresh only when the log ends empty
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable

from observation_sync.aliases import IdAliases, SessionMemory
from observation_sync.cache import LocalCache
from observation_sync.config import DEFAULT_REMOTE_TIMEOUT, DEFAULT_STALL_THRESHOLD
from observation_sync.connectivity import ConnectivityGate
from observation_sync.errors import RemoteError, ValidationError
from observation_sync.log.operations import OperationKind, PendingOperation
from observation_sync.log.pending_log import PendingOperationLog
from observation_sync.logging_config import SyncLogger
from observation_sync.remote.base import RemoteStore
from observation_sync.utils.ids import is_placeholder_id

logger = logging.getLogger(__name__)

SKIP_OFFLINE = "offline"
SKIP_IN_PROGRESS = "in_progress"
SKIP_EMPTY = "empty"
SKIP_UNAUTHENTICATED = "unauthenticated"
SKIP_UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class DrainResult:
    attempted: int = 0
    succeeded: int = 0
    remaining: int = 0
    refreshed: bool = False
    skipped: str | None = None
    stalled: tuple[PendingOperation, ...] = ()

    @property
    def fully_drained(self) -> bool:
        return self.remaining == 0


class SyncEngine:
    """
    Drains the pending operation log against the Remote Store.

    Per-item failures are never raised; the outcome of a drain is
    reported through DrainResult. Only LocalStoreError escapes, since
    nothing can be retried once local persistence fails.
    """

    def __init__(
        self,
        remote: RemoteStore,
        cache: LocalCache,
        log: PendingOperationLog,
        aliases: IdAliases,
        session: SessionMemory,
        gate: ConnectivityGate,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        stall_threshold: int = DEFAULT_STALL_THRESHOLD,
    ):
        self._remote = remote
        self._cache = cache
        self._log = log
        self._aliases = aliases
        self._session = session
        self._gate = gate
        self._timeout = timeout
        self._stall_threshold = stall_threshold
        self._lock = asyncio.Lock()
        self._events = SyncLogger()

    def stalled(self) -> tuple[PendingOperation, ...]:
        """Operations that failed at least stall_threshold times; still retried."""
        return tuple(
            op for op in self._log if op.attempts >= self._stall_threshold
        )

    async def drain(self) -> DrainResult:
        """Perform one drain pass if online and no other pass is running."""
        if not self._gate.is_online():
            return self._skipped(SKIP_OFFLINE)
        if self._lock.locked():
            logger.debug("Drain already running, skipping")
            return self._skipped(SKIP_IN_PROGRESS)

        async with self._lock:
            return await self._drain()

    async def refresh_cache(self) -> bool:
        """
        Replace the cache with a full remote fetch.

        Refused while operations are pending, since the fetch would hide
        their optimistic effects. Returns True if the cache was replaced.
        """
        if not self._log.is_empty():
            return False
        generation = self._cache.generation
        try:
            records = await self.call(self._remote.fetch_all())
        except (RemoteError, asyncio.TimeoutError) as e:
            logger.warning(f"Full refresh failed, keeping cache: {e}")
            return False
        # Writes queued or applied while the fetch was in flight win over it
        if not self._log.is_empty():
            return False
        if self._cache.generation != generation:
            logger.info("Cache changed during refresh, keeping it")
            return False

        self._cache.replace_all(records)
        self._aliases.clear()
        await self._cache.flush()
        await self._aliases.flush()
        logger.info(f"Cache refreshed with {len(records)} observations")
        return True

    async def call(self, awaitable: Awaitable[Any]) -> Any:
        """Await a remote call with the configured timeout."""
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def _drain(self) -> DrainResult:
        if self._log.is_empty():
            return self._skipped(SKIP_EMPTY)

        try:
            user_id = await self.call(self._remote.current_user())
        except (RemoteError, asyncio.TimeoutError) as e:
            logger.warning(f"Drain skipped, remote unreachable: {e}")
            return self._skipped(SKIP_UNREACHABLE)
        if user_id is None:
            logger.warning("Drain skipped, no authenticated user")
            return self._skipped(SKIP_UNAUTHENTICATED)
        await self._session.remember(user_id)

        batch = self._log.snapshot()
        started = time.monotonic()
        self._events.drain_started(len(batch), self._remote.name)

        # Record ids with an earlier failure in this pass; their later
        # operations must not overtake it.
        blocked: set[str] = set()
        succeeded = 0

        for op in batch:
            target_id = self._aliases.resolve(op.record_id)
            waiting_for_insert = (
                op.kind is not OperationKind.INSERT and is_placeholder_id(target_id)
            )
            if target_id in blocked or waiting_for_insert:
                # held, not attempted: the attempt count is left as is
                blocked.add(target_id)
                logger.debug(f"Holding {op.kind.value} {target_id} behind an earlier failure")
            else:
                try:
                    await self._submit(op, target_id)
                except (RemoteError, ValidationError, asyncio.TimeoutError) as e:
                    blocked.add(target_id)
                    kept = self._log.retain(op)
                    self._events.item_failed(
                        op.kind.value, target_id, kept.attempts, str(e) or type(e).__name__
                    )
                else:
                    self._log.discard(op)
                    succeeded += 1
            await self._log.flush()

        refreshed = False
        if self._log.is_empty():
            refreshed = await self.refresh_cache()

        duration_ms = (time.monotonic() - started) * 1000
        self._events.drain_completed(succeeded, len(self._log), refreshed, duration_ms)
        return DrainResult(
            attempted=len(batch),
            succeeded=succeeded,
            remaining=len(self._log),
            refreshed=refreshed,
            stalled=self.stalled(),
        )

    async def _submit(self, op: PendingOperation, target_id: str) -> None:
        if op.kind is OperationKind.INSERT:
            record = op.record
            if is_placeholder_id(target_id):
                # The placeholder never reaches the remote as a key
                created = await self.call(self._remote.create(record))
                self._aliases.add(record.id, created.id)
                await self._aliases.flush()
            else:
                await self.call(self._remote.bulk_upsert([record.with_id(target_id)]))
        elif op.kind is OperationKind.UPDATE:
            await self.call(self._remote.update(op.record.with_id(target_id)))
        elif op.kind is OperationKind.DELETE:
            await self.call(self._remote.delete(target_id))

    def _skipped(self, reason: str) -> DrainResult:
        return DrainResult(
            remaining=len(self._log), skipped=reason, stalled=self.stalled()
        )

