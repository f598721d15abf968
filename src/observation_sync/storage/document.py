"""
document.py - A JSON document persisted under one durable store key.

Writers hand over a callable rather than a value: the callable runs
once the write lock is held, so whichever flush writes last always
writes the newest in-memory state.
"""

import asyncio
import json
from typing import Any, Callable

from observation_sync.errors import LocalStoreError
from observation_sync.storage.base import DurableStore


class JSONDocument:

    def __init__(self, store: DurableStore, key: str):
        self._store = store
        self._key = key
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return self._key

    async def load(self, default: Any) -> Any:
        raw = await self._store.get(self._key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise LocalStoreError(
                f"Stored value is not valid JSON: {e}",
                key=self._key,
                operation="load",
            ) from e

    async def save(self, produce: Callable[[], Any]) -> None:
        async with self._lock:
            payload = json.dumps(produce(), ensure_ascii=False)
            await self._store.set(self._key, payload)
