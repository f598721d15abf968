"""
conftest.py - pytest fixtures for observation_sync tests.
"""

import asyncio
import itertools
import os
import tempfile

import pytest

from observation_sync.errors import AuthenticationError, RemoteRejectedError, RemoteUnavailableError
from observation_sync.models import Observation
from observation_sync.remote.base import RemoteStore
from observation_sync.storage.memory import MemoryDurableStore

# Calls that change remote state, as opposed to session checks and fetches
MUTATING_CALLS = ("create", "update", "delete", "bulk_upsert")


class FakeRemoteStore(RemoteStore):
    """
    In-memory Remote Store recording every call.

    Toggles:
        reachable: False makes every call fail with RemoteUnavailableError
        user_id: None makes current_user() report no session
        reject_ids: record ids whose writes are refused
        fail_next: number of upcoming mutating calls that fail
        delay: seconds each mutating call sleeps before answering
        fetch_delay: seconds fetch_all() sleeps after reading its answer
        session_expired: True makes mutating calls fail with AuthenticationError
    """

    def __init__(self, user_id: str | None = "user-1"):
        self.records: dict[str, Observation] = {}
        self.calls: list[tuple[str, str]] = []
        self.user_id = user_id
        self.reachable = True
        self.reject_ids: set[str] = set()
        self.fail_next = 0
        self.delay = 0.0
        self.fetch_delay = 0.0
        self.session_expired = False
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return "fake"

    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def seed(self, *records: Observation) -> None:
        for record in records:
            self.records[record.id] = record

    async def _enter(self, operation: str, record_id: str = "") -> None:
        self.calls.append((operation, record_id))
        if not self.reachable:
            raise RemoteUnavailableError("remote unreachable", operation=operation)
        if operation in MUTATING_CALLS:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.session_expired:
                raise AuthenticationError("session expired", operation=operation, status_code=401)
            if self.fail_next:
                self.fail_next -= 1
                raise RemoteUnavailableError("server error", operation=operation, status_code=503)
            if record_id in self.reject_ids:
                raise RemoteRejectedError("rejected", operation=operation, status_code=400)

    async def ping(self) -> bool:
        return self.reachable

    async def current_user(self) -> str | None:
        await self._enter("current_user")
        return self.user_id

    async def fetch_all(self) -> list[Observation]:
        await self._enter("fetch_all")
        records = list(self.records.values())
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        return records

    async def create(self, record: Observation) -> Observation:
        await self._enter("create", record.id)
        created = record.with_id(f"srv-{next(self._ids)}")
        self.records[created.id] = created
        return created

    async def update(self, record: Observation) -> None:
        await self._enter("update", record.id)
        self.records[record.id] = record

    async def delete(self, record_id: str) -> None:
        await self._enter("delete", record_id)
        self.records.pop(record_id, None)

    async def bulk_upsert(self, records: list[Observation]) -> None:
        await self._enter("bulk_upsert", ",".join(r.id for r in records))
        for record in records:
            self.records[record.id] = record


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test databases."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(temp_dir):
    return os.path.join(temp_dir, "observations.db")


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def store():
    return MemoryDurableStore()
