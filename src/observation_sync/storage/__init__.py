"""
storage - Local durable stores.
"""

from observation_sync.storage.base import DurableStore
from observation_sync.storage.memory import MemoryDurableStore
from observation_sync.storage.sqlite_store import SQLiteDurableStore

__all__ = [
    "DurableStore",
    "MemoryDurableStore",
    "SQLiteDurableStore",
]
