"""
base.py - Abstract base class for Remote Store adapters.

All remote implementations must inherit from RemoteStore.
"""

from abc import ABC, abstractmethod

from observation_sync.models import Observation


class RemoteStore(ABC):
    """
    Abstract base class for the authoritative remote store.

    Every call may fail with a RemoteError subclass:
    - RemoteUnavailableError for transport and server failures
    - RemoteRejectedError when the request itself is refused
    - AuthenticationError when no user can be attributed
    """

    @abstractmethod
    async def ping(self) -> bool:
        """Check whether the remote answers at all."""
        pass

    @abstractmethod
    async def current_user(self) -> str | None:
        """Return the authenticated user id, or None without a session."""
        pass

    @abstractmethod
    async def fetch_all(self) -> list[Observation]:
        """Fetch every record owned by the current user."""
        pass

    @abstractmethod
    async def create(self, record: Observation) -> Observation:
        """
        Create a record. The remote assigns the canonical id.

        Returns:
            The record as stored remotely
        """
        pass

    @abstractmethod
    async def update(self, record: Observation) -> None:
        """Write a record by id. Creates it if missing (upsert)."""
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Delete a record by id. Deleting a missing record succeeds."""
        pass

    @abstractmethod
    async def bulk_upsert(self, records: list[Observation]) -> None:
        """Insert or replace many records by id."""
        pass

    async def close(self) -> None:
        """Close connection."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Remote name for logging."""
        pass
