"""
cache.py - Durable local snapshot of observation records.

The cache is the only read path for the UI. It never holds two
records with the same id. Mutators change the in-memory list
synchronously; flush() persists the latest state. Each change bumps
generation, so a caller holding an older snapshot can tell it is stale.
"""

import logging
from typing import Iterable

from observation_sync.config import CACHE_KEY
from observation_sync.errors import LocalStoreError
from observation_sync.models import Observation
from observation_sync.storage.base import DurableStore
from observation_sync.storage.document import JSONDocument

logger = logging.getLogger(__name__)


def unique_by_id(records: Iterable[Observation]) -> list[Observation]:
    """Collapse records sharing an id; the last one wins and keeps the first one's position."""
    result: list[Observation] = []
    positions: dict[str, int] = {}
    for record in records:
        index = positions.get(record.id)
        if index is None:
            positions[record.id] = len(result)
            result.append(record)
        else:
            result[index] = record
    return result


class LocalCache:

    def __init__(self, store: DurableStore):
        self._document = JSONDocument(store, CACHE_KEY)
        self._records: list[Observation] = []
        self._generation = 0

    async def load(self) -> None:
        data = await self._document.load(default=[])
        if not isinstance(data, list):
            raise LocalStoreError(
                "Stored cache is not a list", key=CACHE_KEY, operation="load"
            )
        self._records = unique_by_id(Observation.from_dict(item) for item in data)
        logger.debug(f"Loaded {len(self._records)} cached observations")

    @property
    def generation(self) -> int:
        return self._generation

    async def flush(self) -> None:
        await self._document.save(lambda: [r.to_dict() for r in self._records])

    def __len__(self) -> int:
        return len(self._records)

    def list(self) -> list[Observation]:
        return list(self._records)

    def get(self, record_id: str) -> Observation | None:
        for record in self._records:
            if record.id == record_id:
                return record
        return None

    def ids(self) -> set[str]:
        return {r.id for r in self._records}

    def prepend(self, record: Observation) -> None:
        """Add a new record in front, replacing any entry with the same id."""
        self._records = [record] + [r for r in self._records if r.id != record.id]
        self._generation += 1

    def replace(self, record: Observation) -> bool:
        """Replace the entry with the same id. Returns False if there is none."""
        self._generation += 1
        for i, existing in enumerate(self._records):
            if existing.id == record.id:
                self._records[i] = record
                return True
        return False

    def remove(self, record_id: str) -> bool:
        self._generation += 1
        before = len(self._records)
        self._records = [r for r in self._records if r.id != record_id]
        return len(self._records) != before

    def replace_all(self, records: Iterable[Observation]) -> None:
        self._records = unique_by_id(records)
        self._generation += 1
