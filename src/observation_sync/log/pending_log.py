"""
pending_log.py - Durable FIFO log of pending operations.

The log is the at-least-once retry buffer between the optimistic
mutation path and the Remote Store. Mutators change the in-memory
list synchronously; flush() persists the latest state.

Entries are only ever appended at the tail by the mutation path and
removed or replaced in place by the sync engine, so an entry keeps
its position relative to everything enqueued after it.
"""

import logging
from typing import Iterator

from observation_sync.config import QUEUE_KEY
from observation_sync.errors import LocalStoreError
from observation_sync.log.operations import PendingOperation
from observation_sync.storage.base import DurableStore
from observation_sync.storage.document import JSONDocument

logger = logging.getLogger(__name__)


class PendingOperationLog:

    def __init__(self, store: DurableStore):
        self._document = JSONDocument(store, QUEUE_KEY)
        self._ops: list[PendingOperation] = []

    async def load(self) -> None:
        data = await self._document.load(default=[])
        if not isinstance(data, list):
            raise LocalStoreError(
                "Stored queue is not a list", key=QUEUE_KEY, operation="load"
            )
        self._ops = [PendingOperation.from_dict(item) for item in data]
        logger.debug(f"Loaded {len(self._ops)} pending operations")

    async def flush(self) -> None:
        await self._document.save(lambda: [op.to_dict() for op in self._ops])

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[PendingOperation]:
        return iter(list(self._ops))

    def is_empty(self) -> bool:
        return not self._ops

    def snapshot(self) -> list[PendingOperation]:
        return list(self._ops)

    def append(self, op: PendingOperation) -> None:
        self._ops.append(op)

    def discard(self, op: PendingOperation) -> None:
        """Drop an entry after the Remote Store confirmed it."""
        del self._ops[self._index_of(op)]

    def retain(self, op: PendingOperation) -> PendingOperation:
        """Keep an entry in place, counting one more failed attempt."""
        kept = op.failed()
        self._ops[self._index_of(op)] = kept
        return kept

    def _index_of(self, op: PendingOperation) -> int:
        for i, entry in enumerate(self._ops):
            if entry is op:
                return i
        raise ValueError(f"Operation for {op.record_id} is not in the log")
