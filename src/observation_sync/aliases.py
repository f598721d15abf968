"""
aliases.py - Placeholder ID aliases and session memory.

When a drain creates a record that was queued under a placeholder ID,
the placeholder -> server ID pair is kept here so later operations
still naming the placeholder reach the right remote record, even
across restarts. The map is emptied once a full refresh has removed
every placeholder from the cache.
"""

from observation_sync.config import ALIASES_KEY, SESSION_KEY
from observation_sync.errors import LocalStoreError
from observation_sync.models import Observation
from observation_sync.storage.base import DurableStore
from observation_sync.storage.document import JSONDocument


class IdAliases:

    def __init__(self, store: DurableStore):
        self._document = JSONDocument(store, ALIASES_KEY)
        self._aliases: dict[str, str] = {}

    async def load(self) -> None:
        data = await self._document.load(default={})
        if not isinstance(data, dict):
            raise LocalStoreError(
                "Stored aliases are not a mapping", key=ALIASES_KEY, operation="load"
            )
        self._aliases = {str(k): str(v) for k, v in data.items()}

    async def flush(self) -> None:
        await self._document.save(lambda: dict(self._aliases))

    def __len__(self) -> int:
        return len(self._aliases)

    def resolve(self, record_id: str) -> str:
        return self._aliases.get(record_id, record_id)

    def resolve_record(self, record: Observation) -> Observation:
        """Return record under its server id if its placeholder was already confirmed."""
        target_id = self.resolve(record.id)
        return record if target_id == record.id else record.with_id(target_id)

    def add(self, placeholder_id: str, server_id: str) -> None:
        self._aliases[placeholder_id] = server_id

    def clear(self) -> None:
        self._aliases.clear()


class SessionMemory:
    """
    Remembers the last user the Remote Store attributed requests to.

    A user who was signed in once may keep queueing writes after the
    session lapses; a user never seen cannot.
    """

    def __init__(self, store: DurableStore):
        self._document = JSONDocument(store, SESSION_KEY)
        self._user_id: str | None = None

    async def load(self) -> None:
        data = await self._document.load(default={})
        self._user_id = data.get("user_id") if isinstance(data, dict) else None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def has_session(self) -> bool:
        return self._user_id is not None

    async def remember(self, user_id: str) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        await self._document.save(lambda: {"user_id": self._user_id})
