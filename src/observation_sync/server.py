"""
server.py - Reference Remote Store server.

A FastAPI application serving the observation REST contract consumed by
HTTPRemoteStore, backed by one SQLite table. Each bearer token maps to
a user; a user only sees and changes their own rows.

Run with: observation-sync serve --db observations_server.db
"""

import logging
import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from observation_sync.models import ROW_COLUMNS
from observation_sync.storage.sqlite_store import create_connection, execute_in_transaction

logger = logging.getLogger("observation_sync.server")


class ObservationRow(BaseModel):
    id: Optional[str] = None
    species_name: str = Field(..., min_length=1)
    latin_name: Optional[str] = None
    taxonomic_group: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    count: int = Field(1, ge=0)
    location: Optional[str] = None
    gps_lat: Optional[float] = None
    gps_lon: Optional[float] = None
    municipality: Optional[str] = None
    department: Optional[str] = None
    country: Optional[str] = None
    altitude: Optional[float] = None
    comment: Optional[str] = None
    status: Optional[str] = None
    atlas_code: Optional[str] = None
    protocol: Optional[str] = None
    sexe: Optional[str] = None
    age: Optional[str] = None
    observation_condition: Optional[str] = None
    comportement: Optional[str] = None
    photo_url: Optional[str] = None
    sound_url: Optional[str] = None
    wikipedia_image: Optional[str] = None


OBSERVATIONS_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS observations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    {", ".join(ROW_COLUMNS)},
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
)
"""


class ObservationRepository:
    """
    Per-user observation rows in SQLite.

    Writes run in IMMEDIATE transactions; one connection is shared by
    request handlers under a lock.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn = create_connection(db_path)
        self._conn.row_factory = _dict_factory
        self._conn.execute(OBSERVATIONS_TABLE_SQL)
        self._lock = threading.Lock()

    def list(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM observations WHERE user_id = ? "
                "ORDER BY date DESC, created_at DESC",
                (user_id,),
            ).fetchall()
        return [_public(row) for row in rows]

    def get(self, user_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM observations WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            ).fetchone()
        return _public(row) if row else None

    def upsert_many(self, user_id: str, rows: List[Dict[str, Any]]) -> List[str]:
        """
        Insert or fully replace rows by id.

        Rows without an id get a fresh one. Raises PermissionError if any
        id belongs to another user; nothing is written in that case.
        """
        now = time.time()
        ids = [row.get("id") or str(uuid.uuid4()) for row in rows]

        def do_upsert(conn) -> None:
            for record_id, row in zip(ids, rows):
                owner = conn.execute(
                    "SELECT user_id FROM observations WHERE id = ?", (record_id,)
                ).fetchone()
                if owner is not None and owner["user_id"] != user_id:
                    raise PermissionError(record_id)
                values = [row.get(column) for column in ROW_COLUMNS]
                conn.execute(
                    f"""
                    INSERT INTO observations (id, user_id, {", ".join(ROW_COLUMNS)}, created_at, updated_at)
                    VALUES (?, ?, {", ".join("?" for _ in ROW_COLUMNS)}, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        {", ".join(f"{c} = excluded.{c}" for c in ROW_COLUMNS)},
                        updated_at = excluded.updated_at
                    """,
                    [record_id, user_id, *values, now, now],
                )

        with self._lock:
            execute_in_transaction(self._conn, do_upsert)
        return ids

    def delete(self, user_id: str, record_id: str) -> bool:
        def do_delete(conn) -> int:
            return conn.execute(
                "DELETE FROM observations WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            ).rowcount

        with self._lock:
            return execute_in_transaction(self._conn, do_delete) > 0

    def close(self) -> None:
        self._conn.close()


def _dict_factory(cursor, row) -> Dict[str, Any]:
    return {col[0]: value for col, value in zip(cursor.description, row)}


def _public(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k not in ("user_id", "created_at", "updated_at")}


def parse_tokens(raw: str) -> Dict[str, str]:
    """Parse ``token:user`` pairs separated by commas."""
    tokens = {}
    for pair in raw.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token and user_id:
            tokens[token] = user_id
    return tokens


# Global configuration
DB_PATH = os.environ.get("OBSERVATION_SYNC_SERVER_DB_PATH", "observations_server.db")
TOKENS = parse_tokens(os.environ.get("OBSERVATION_SYNC_SERVER_TOKENS", ""))

_repository: Optional[ObservationRepository] = None


def get_repository() -> ObservationRepository:
    global _repository
    if _repository is None:
        _repository = ObservationRepository(DB_PATH)
    return _repository


def get_token_map() -> Dict[str, str]:
    return TOKENS


async def current_user(
    authorization: Optional[str] = Header(None),
    tokens: Dict[str, str] = Depends(get_token_map),
) -> str:
    """Resolve the bearer token to a user id."""
    scheme, _, token = (authorization or "").partition(" ")
    user_id = tokens.get(token) if scheme.lower() == "bearer" else None
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
        )
    return user_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting observation server with DB: {DB_PATH}")
    yield
    if _repository is not None:
        _repository.close()


app = FastAPI(title="Observation Sync Server", lifespan=lifespan)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"},
    )


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "observation-sync"}


@app.get("/auth/me")
async def who_am_i(user_id: str = Depends(current_user)):
    return {"user_id": user_id}


@app.get("/observations")
async def list_observations(
    user_id: str = Depends(current_user),
    repo: ObservationRepository = Depends(get_repository),
):
    """All of the user's observations, most recent date first."""
    return repo.list(user_id)


@app.post("/observations", status_code=status.HTTP_201_CREATED)
async def create_observation(
    row: ObservationRow,
    user_id: str = Depends(current_user),
    repo: ObservationRepository = Depends(get_repository),
):
    """Create an observation. The server always assigns the id."""
    data = row.model_dump()
    data["id"] = None
    [record_id] = _upsert(repo, user_id, [data])
    logger.info(f"Created observation {record_id} for {user_id}")
    return repo.get(user_id, record_id)


@app.put("/observations/{record_id}")
async def upsert_observation(
    record_id: str,
    row: ObservationRow,
    user_id: str = Depends(current_user),
    repo: ObservationRepository = Depends(get_repository),
):
    data = row.model_dump()
    data["id"] = record_id
    _upsert(repo, user_id, [data])
    return repo.get(user_id, record_id)


@app.delete("/observations/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_observation(
    record_id: str,
    user_id: str = Depends(current_user),
    repo: ObservationRepository = Depends(get_repository),
):
    """Delete an observation. Deleting an unknown id succeeds."""
    if not repo.delete(user_id, record_id):
        logger.debug(f"Delete of unknown observation {record_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/observations/bulk")
async def bulk_upsert_observations(
    rows: List[ObservationRow],
    user_id: str = Depends(current_user),
    repo: ObservationRepository = Depends(get_repository),
):
    ids = _upsert(repo, user_id, [row.model_dump() for row in rows])
    return {"upserted": len(ids), "ids": ids}


def _upsert(
    repo: ObservationRepository, user_id: str, rows: List[Dict[str, Any]]
) -> List[str]:
    try:
        return repo.upsert_many(user_id, rows)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Observation {e} belongs to another user",
        )
