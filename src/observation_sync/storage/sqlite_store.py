"""
sqlite_store.py - SQLite-backed durable store.

Handles connection creation, PRAGMA configuration and the single
key-value table. Blocking sqlite3 calls run in the default executor
so they never stall the event loop.

All connections use WAL mode for crash safety.
"""

import asyncio
import logging
import sqlite3
import threading
from typing import Any, Callable

from observation_sync.config import SQLITE_PRAGMAS
from observation_sync.errors import LocalStoreError
from observation_sync.storage.base import DurableStore

logger = logging.getLogger(__name__)

KV_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL DEFAULT (julianday('now'))
)
"""


def create_connection(db_path: str) -> sqlite3.Connection:
    """
    Create a new SQLite connection with proper configuration.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured sqlite3.Connection

    Raises:
        LocalStoreError: If connection fails
    """
    try:
        conn = sqlite3.connect(
            db_path,
            isolation_level=None,  # Manual transaction control
            check_same_thread=False,
        )
    except sqlite3.Error as e:
        raise LocalStoreError(
            f"Failed to connect to database: {e}",
            operation="connect",
        ) from e

    apply_pragmas(conn)
    return conn


def apply_pragmas(conn: sqlite3.Connection) -> None:
    for pragma, value in SQLITE_PRAGMAS.items():
        try:
            conn.execute(f"PRAGMA {pragma} = {value}")
        except sqlite3.Error as e:
            raise LocalStoreError(
                f"Failed to set PRAGMA {pragma}: {e}",
                operation="pragma",
            ) from e


def execute_in_transaction(
    conn: sqlite3.Connection,
    operation: Callable[[sqlite3.Connection], Any]
) -> Any:
    """
    Execute an operation within an IMMEDIATE transaction.

    Ensures atomicity: all changes commit or all rollback.

    Raises:
        LocalStoreError: If transaction fails
    """
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            result = operation(conn)
            conn.execute("COMMIT")
            return result
        except Exception:
            conn.execute("ROLLBACK")
            raise
    except sqlite3.Error as e:
        raise LocalStoreError(
            f"Transaction failed: {e}",
            operation="transaction",
        ) from e


class SQLiteDurableStore(DurableStore):
    """
    Durable store persisting each key as one row of ``kv_store``.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        # executor threads share one connection
        self._lock = threading.Lock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = create_connection(self._db_path)
            try:
                self._conn.execute(KV_TABLE_SQL)
            except sqlite3.Error as e:
                raise LocalStoreError(
                    f"Failed to initialize store: {e}", operation="initialize"
                ) from e
        return self._conn

    async def get(self, key: str) -> str | None:
        return await self._run_in_executor(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await self._run_in_executor(self._set, key, value)

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _get(self, key: str) -> str | None:
        try:
            with self._lock:
                row = self.connection.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Read failed: {e}", key=key, operation="get") from e
        return row[0] if row else None

    def _set(self, key: str, value: str) -> None:
        def do_set(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, julianday('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )

        with self._lock:
            execute_in_transaction(self.connection, do_set)
        logger.debug(f"Persisted {key} ({len(value)} chars)")

    async def _run_in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)
