"""
log - Pending operation log.
"""

from observation_sync.log.operations import (
    OperationKind,
    PendingOperation,
    insert_operation,
    update_operation,
    delete_operation,
)
from observation_sync.log.pending_log import PendingOperationLog

__all__ = [
    "OperationKind",
    "PendingOperation",
    "insert_operation",
    "update_operation",
    "delete_operation",
    "PendingOperationLog",
]
