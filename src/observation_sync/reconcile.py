"""
reconcile.py - Merge-import of externally supplied records.

Record-level last-write-wins: an incoming record replaces the existing
record with the same id in full, with no per-field merge. Records with
an unknown id are appended. The fold is sequential, so when a batch
repeats an id the last occurrence wins.
"""

import json
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from observation_sync.errors import ValidationError
from observation_sync.models import Observation

BACKUP_DATA_FILE = "data.json"


@dataclass(frozen=True)
class MergeResult:
    records: list[Observation]
    added: int
    updated: int


def merge_records(
    current: Iterable[Observation],
    incoming: Iterable[Observation]
) -> MergeResult:
    """
    Fold incoming records into current by id.

    Args:
        current: Records already known, in display order
        incoming: Imported records, in batch order

    Returns:
        MergeResult with the combined list; replaced records keep their
        position, new ones are appended in batch order
    """
    merged = list(current)
    positions = {record.id: i for i, record in enumerate(merged)}
    added = 0
    updated = 0

    for record in incoming:
        index = positions.get(record.id)
        if index is not None:
            merged[index] = record
            updated += 1
        else:
            positions[record.id] = len(merged)
            merged.append(record)
            added += 1

    return MergeResult(records=merged, added=added, updated=updated)


def load_backup(path: str | Path) -> list[Observation]:
    """
    Read observations from a backup.

    Accepts either a JSON file holding a list of records in document
    form, or a backup archive containing such a list as data.json.

    Raises:
        ValidationError: If the file is unreadable or malformed
    """
    path = Path(path)
    try:
        if zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as archive:
                raw = archive.read(BACKUP_DATA_FILE).decode("utf-8")
        else:
            raw = path.read_text(encoding="utf-8")
        data = json.loads(raw)
    except (OSError, KeyError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(
            f"Cannot read backup: {e}", field="path", value=str(path)
        ) from e

    if not isinstance(data, list):
        raise ValidationError(
            f"Backup must hold a list of observations, got {type(data).__name__}",
            field="data",
        )
    return [Observation.from_dict(item) for item in data]
