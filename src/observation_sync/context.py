"""
context.py - Application-owned sync context.

SyncContext wires the local cache, the pending operation log, the
connectivity gate and the sync engine around one Remote Store and one
Local Durable Store, and exposes the API the UI layer calls:

    ctx = await SyncContext.open(remote, store, gate=gate)
    await ctx.start()
    record = await ctx.create(Observation(species_name="Merle noir"))
    ctx.list()

Every mutation returns once the local cache reflects it. Remote
failures on the way are absorbed into the pending log; only an
authentication failure without any prior session and local store
failures reach the caller.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List

from observation_sync.aliases import IdAliases, SessionMemory
from observation_sync.cache import LocalCache, unique_by_id
from observation_sync.config import DEFAULT_REMOTE_TIMEOUT, DEFAULT_STALL_THRESHOLD
from observation_sync.connectivity import ConnectivityGate, Route
from observation_sync.engine import DrainResult, SyncEngine, SKIP_EMPTY
from observation_sync.errors import AuthenticationError, RemoteError, ValidationError
from observation_sync.log.operations import (
    OperationKind,
    PendingOperation,
    delete_operation,
    insert_operation,
    update_operation,
)
from observation_sync.log.pending_log import PendingOperationLog
from observation_sync.logging_config import SyncLogger
from observation_sync.models import Observation
from observation_sync.reconcile import MergeResult, merge_records
from observation_sync.remote.base import RemoteStore
from observation_sync.storage.base import DurableStore
from observation_sync.utils.ids import generate_placeholder_id, is_placeholder_id

logger = logging.getLogger(__name__)


class _MustDefer(Exception):
    """The remote path cannot take this operation yet; queue it."""


class SyncContext:

    def __init__(
        self,
        remote: RemoteStore,
        store: DurableStore,
        gate: ConnectivityGate | None = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        stall_threshold: int = DEFAULT_STALL_THRESHOLD,
    ):
        self.remote = remote
        self.store = store
        self.gate = gate or ConnectivityGate()
        self.cache = LocalCache(store)
        self.log = PendingOperationLog(store)
        self.aliases = IdAliases(store)
        self.session = SessionMemory(store)
        self.engine = SyncEngine(
            remote,
            self.cache,
            self.log,
            self.aliases,
            self.session,
            self.gate,
            timeout=timeout,
            stall_threshold=stall_threshold,
        )
        self.gate.on_reconnect(self.drain_queue)
        self._events = SyncLogger()

        # (remote path, deferred path) per operation kind
        self._dispatch: dict[OperationKind, tuple[Callable[[Any], Awaitable[Any]], ...]] = {
            OperationKind.INSERT: (self._create_remote, self._create_deferred),
            OperationKind.UPDATE: (self._update_remote, self._update_deferred),
            OperationKind.DELETE: (self._delete_remote, self._delete_deferred),
        }

    @classmethod
    async def open(
        cls,
        remote: RemoteStore,
        store: DurableStore,
        **kwargs: Any,
    ) -> "SyncContext":
        """Create a context and load its durable state."""
        context = cls(remote, store, **kwargs)
        await context.load()
        return context

    async def load(self) -> None:
        await self.cache.load()
        await self.log.load()
        await self.aliases.load()
        await self.session.load()

    async def start(self) -> DrainResult:
        """
        Startup sync: drain whatever was queued before the last exit,
        or refresh the cache when nothing was.
        """
        if self.gate.is_online():
            await self._remember_session()
        result = await self.drain_queue()
        if result.skipped == SKIP_EMPTY and self.gate.is_online():
            await self.engine.refresh_cache()
        return result

    async def close(self) -> None:
        await self.gate.wait_idle()
        await self.remote.close()
        await self.store.close()

    # === Reads ===

    def list(self) -> List[Observation]:
        """Records as currently known locally. Never touches the network."""
        return self.cache.list()

    def pending_count(self) -> int:
        return len(self.log)

    def pending_operations(self) -> List[PendingOperation]:
        return self.log.snapshot()

    async def refresh(self) -> List[Observation]:
        """Fetch everything when online and nothing is pending; fall back to the cache."""
        if self.gate.is_online():
            await self.engine.refresh_cache()
        return self.cache.list()

    # === Mutations ===

    async def create(self, record: Observation) -> Observation:
        return await self._mutate(OperationKind.INSERT, record)

    async def update(self, record: Observation) -> Observation:
        if not record.id:
            raise ValidationError("Cannot update an observation without id", field="id")
        return await self._mutate(OperationKind.UPDATE, record)

    async def delete(self, record_id: str) -> None:
        if not record_id:
            raise ValidationError("Cannot delete an observation without id", field="id")
        await self._mutate(OperationKind.DELETE, record_id)

    async def drain_queue(self) -> DrainResult:
        return await self.engine.drain()

    async def import_batch(self, records: Iterable[Observation]) -> MergeResult:
        """
        Merge imported records into the current set and push the result.

        The imported records are folded into the cache in every case. If
        the push cannot happen, each imported record is queued instead.
        """
        incoming = unique_by_id(
            r if r.id else r.with_id(generate_placeholder_id()) for r in records
        )
        pushed_ids: set[str] = set()

        if self.gate.route() is Route.REMOTE:
            to_push = [
                self.aliases.resolve_record(r)
                for r in merge_records(self.cache.list(), incoming).records
                if not is_placeholder_id(self.aliases.resolve(r.id))
            ]
            try:
                await self.engine.call(self.remote.bulk_upsert(to_push))
                pushed_ids = {r.id for r in to_push}
            except AuthenticationError:
                if not self.session.has_session():
                    raise
                logger.warning("Session lapsed, queueing imported observations")
            except (RemoteError, asyncio.TimeoutError) as e:
                logger.warning(f"Bulk upsert failed, queueing imported observations: {e}")

        # Writes and refreshes may have landed during the push: merge into
        # the cache as it is now, with no await until it is replaced
        result = merge_records(self.cache.list(), incoming)
        known_ids = self.cache.ids()
        for record in incoming:
            target_id = self.aliases.resolve(record.id)
            if is_placeholder_id(target_id):
                if record.id in known_ids:
                    self.log.append(update_operation(record))
                else:
                    self.log.append(insert_operation(record))
            elif target_id not in pushed_ids or self._has_pending(target_id):
                # older queued writes for the record must not land after the import
                self.log.append(update_operation(record))

        self.cache.replace_all(result.records)
        await self.log.flush()
        await self.cache.flush()
        logger.info(
            f"Imported {len(incoming)} observations: {result.added} added, "
            f"{result.updated} updated, {len(self.log)} pending"
        )
        return result

    async def _mutate(self, kind: OperationKind, subject: Any) -> Any:
        remote_path, deferred_path = self._dispatch[kind]
        if self.gate.route() is Route.REMOTE:
            try:
                return await remote_path(subject)
            except _MustDefer:
                pass
            except AuthenticationError:
                if not self.session.has_session():
                    raise
                logger.warning(f"Session lapsed, queueing {kind.value}")
            except (RemoteError, asyncio.TimeoutError) as e:
                logger.warning(f"Remote {kind.value} failed, queueing: {e}")
        return await deferred_path(subject)

    def _target_id(self, record_id: str) -> str:
        """
        Remote id for a record, or _MustDefer when the remote cannot take
        it directly: its insert is unconfirmed, or older operations for
        it are still queued and must go first.
        """
        target_id = self.aliases.resolve(record_id)
        if is_placeholder_id(target_id):
            raise _MustDefer()
        if self._has_pending(target_id):
            raise _MustDefer()
        return target_id

    def _has_pending(self, target_id: str) -> bool:
        return any(self.aliases.resolve(op.record_id) == target_id for op in self.log)

    async def _remember_session(self) -> None:
        try:
            user_id = await self.engine.call(self.remote.current_user())
        except (RemoteError, asyncio.TimeoutError) as e:
            logger.info(f"Could not check session: {e}")
            return
        if user_id is not None:
            await self.session.remember(user_id)

    # --- remote paths ---

    async def _create_remote(self, record: Observation) -> Observation:
        created = await self.engine.call(self.remote.create(record))
        self.cache.prepend(created)
        await self.cache.flush()
        return created

    async def _update_remote(self, record: Observation) -> Observation:
        target_id = self._target_id(record.id)
        await self.engine.call(self.remote.update(record.with_id(target_id)))
        self.cache.replace(record)
        await self.cache.flush()
        return record

    async def _delete_remote(self, record_id: str) -> None:
        target_id = self._target_id(record_id)
        await self.engine.call(self.remote.delete(target_id))
        self.cache.remove(record_id)
        await self.cache.flush()

    # --- deferred paths ---

    async def _create_deferred(self, record: Observation) -> Observation:
        if not record.id:
            record = record.with_id(generate_placeholder_id())
        self.log.append(insert_operation(record))
        self.cache.prepend(record)
        await self._flush_deferred(OperationKind.INSERT, record.id)
        return record

    async def _update_deferred(self, record: Observation) -> Observation:
        self.log.append(update_operation(record))
        self.cache.replace(record)
        await self._flush_deferred(OperationKind.UPDATE, record.id)
        return record

    async def _delete_deferred(self, record_id: str) -> None:
        self.log.append(delete_operation(record_id))
        self.cache.remove(record_id)
        await self._flush_deferred(OperationKind.DELETE, record_id)

    async def _flush_deferred(self, kind: OperationKind, record_id: str) -> None:
        # queue is persisted before the cache
        await self.log.flush()
        await self.cache.flush()
        self._events.operation_queued(kind.value, record_id, len(self.log))
