"""
base.py - Abstract base class for local durable stores.

A durable store is a string key-value mapping that survives process
restarts. The sync context keeps the local cache, the pending operation
log, the ID alias map and the last seen session under fixed keys.
"""

from abc import ABC, abstractmethod


class DurableStore(ABC):
    """
    Abstract base class for local durable stores.

    Implementations must raise LocalStoreError on any failure; callers
    treat it as fatal for the operation in progress.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under key, or None."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        pass

    async def close(self) -> None:
        """Release underlying resources."""
        pass
