"""
observation_sync - Offline-first synchronization core for field observations.

Keeps a local cache of observation records usable without a network,
queues every change made offline in a durable log, and replays the log
against the remote store in order once connectivity returns.
"""

from observation_sync.connectivity import ConnectivityGate
from observation_sync.context import SyncContext
from observation_sync.engine import DrainResult, SyncEngine
from observation_sync.errors import (
    SyncError,
    RemoteError,
    RemoteUnavailableError,
    RemoteRejectedError,
    AuthenticationError,
    LocalStoreError,
    ValidationError,
)
from observation_sync.models import (
    ConservationStatus,
    GeoPoint,
    Observation,
    TaxonomicGroup,
)
from observation_sync.remote import HTTPRemoteStore, RemoteStore
from observation_sync.storage import DurableStore, MemoryDurableStore, SQLiteDurableStore

__version__ = "0.1.0"
__all__ = [
    # Core
    "SyncContext",
    "SyncEngine",
    "DrainResult",
    "ConnectivityGate",
    # Records
    "Observation",
    "GeoPoint",
    "TaxonomicGroup",
    "ConservationStatus",
    # Adapters
    "RemoteStore",
    "HTTPRemoteStore",
    "DurableStore",
    "MemoryDurableStore",
    "SQLiteDurableStore",
    # Errors
    "SyncError",
    "RemoteError",
    "RemoteUnavailableError",
    "RemoteRejectedError",
    "AuthenticationError",
    "LocalStoreError",
    "ValidationError",
]
