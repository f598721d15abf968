"""
operations.py - Pending operation data structures.

Operations are the fundamental unit of deferred change.
Each operation represents a single INSERT, UPDATE, or DELETE of an
observation that the Remote Store has not confirmed yet.

Serialized form (one entry of the durable queue):

    {"action": "INSERT", "payload": {...}, "timestamp": 1700000000000, "attempts": 0}
"""

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from observation_sync.errors import ValidationError
from observation_sync.models import Observation


class OperationKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class PendingOperation:
    """
    Immutable representation of a queued mutation.

    payload is the document form of the record for INSERT and UPDATE,
    and ``{"id": ...}`` for DELETE.
    """
    kind: OperationKind
    payload: dict[str, Any]
    enqueued_at: int  # Unix milliseconds
    attempts: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.kind, OperationKind):
            raise ValidationError(
                f"kind must be an OperationKind, got {self.kind!r}",
                field="kind",
                value=self.kind,
            )
        if not self.payload.get("id"):
            raise ValidationError(
                f"{self.kind.value} operation must reference a record id",
                field="payload",
            )

    @property
    def record_id(self) -> str:
        return self.payload["id"]

    @property
    def record(self) -> Observation:
        if self.kind is OperationKind.DELETE:
            raise ValidationError("DELETE operation carries no record", field="kind")
        return Observation.from_dict(self.payload)

    def failed(self) -> "PendingOperation":
        return replace(self, attempts=self.attempts + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.kind.value,
            "payload": self.payload,
            "timestamp": self.enqueued_at,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingOperation":
        try:
            kind = OperationKind(data["action"])
            payload = dict(data["payload"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(
                f"Malformed pending operation: {e}", field="action", value=data
            ) from e
        return cls(
            kind=kind,
            payload=payload,
            enqueued_at=int(data.get("timestamp") or 0),
            attempts=int(data.get("attempts") or 0),
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


def insert_operation(record: Observation) -> PendingOperation:
    return PendingOperation(OperationKind.INSERT, record.to_dict(), _now_ms())


def update_operation(record: Observation) -> PendingOperation:
    return PendingOperation(OperationKind.UPDATE, record.to_dict(), _now_ms())


def delete_operation(record_id: str) -> PendingOperation:
    return PendingOperation(OperationKind.DELETE, {"id": record_id}, _now_ms())
