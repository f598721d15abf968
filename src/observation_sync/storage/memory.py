"""
memory.py - In-process durable store.

Survives nothing; useful for tests and for hosts that persist state
elsewhere. Several contexts sharing one instance behave like restarts
over the same storage.
"""

from observation_sync.storage.base import DurableStore


class MemoryDurableStore(DurableStore):

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)
