"""
config.py - Configuration for observation_sync.

Constants are immutable and defined at module level.
Runtime settings are read once from the environment into SyncSettings.
"""

import os
from dataclasses import dataclass
from typing import Final

# Keys used in the Local Durable Store
CACHE_KEY: Final[str] = "cache"
QUEUE_KEY: Final[str] = "queue"
ALIASES_KEY: Final[str] = "aliases"
SESSION_KEY: Final[str] = "session"

# Records created offline carry an ID with this prefix until a drain
# replaces it with the server-assigned one
PLACEHOLDER_PREFIX: Final[str] = "temp-"

# Seconds before a single remote call is abandoned
DEFAULT_REMOTE_TIMEOUT: Final[float] = 15.0

# Failed attempts after which a pending operation is reported as stalled
DEFAULT_STALL_THRESHOLD: Final[int] = 5

# SQLite PRAGMA settings for the durable store and the reference server
SQLITE_PRAGMAS: Final[dict[str, str]] = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "busy_timeout": "5000",
}

ENV_PREFIX: Final[str] = "OBSERVATION_SYNC_"


@dataclass(frozen=True)
class SyncSettings:
    """Runtime settings for a client-side sync context."""
    db_path: str = "observations.db"
    remote_url: str | None = None
    token: str | None = None
    timeout: float = DEFAULT_REMOTE_TIMEOUT
    stall_threshold: int = DEFAULT_STALL_THRESHOLD
    drain_interval: float = 60.0
    retry_max_seconds: float = 300.0

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "SyncSettings":
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            return env.get(f"{ENV_PREFIX}{name}")

        defaults = cls()
        return cls(
            db_path=_get("DB_PATH") or defaults.db_path,
            remote_url=_get("REMOTE_URL"),
            token=_get("TOKEN"),
            timeout=float(_get("TIMEOUT") or defaults.timeout),
            stall_threshold=int(_get("STALL_THRESHOLD") or defaults.stall_threshold),
            drain_interval=float(_get("DRAIN_INTERVAL") or defaults.drain_interval),
            retry_max_seconds=float(_get("RETRY_MAX_SECONDS") or defaults.retry_max_seconds),
        )
