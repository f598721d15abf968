"""
http_remote.py - HTTP-based Remote Store.

Uses the REST API served by observation_sync.server (or any server
implementing the same contract).
"""

import logging
from typing import Any

import httpx

from observation_sync.config import DEFAULT_REMOTE_TIMEOUT
from observation_sync.errors import (
    AuthenticationError,
    RemoteRejectedError,
    RemoteUnavailableError,
)
from observation_sync.models import Observation
from observation_sync.remote.base import RemoteStore

logger = logging.getLogger(__name__)


class HTTPRemoteStore(RemoteStore):
    """
    HTTP REST remote store.

    Endpoints expected on server:
    - GET /health - Liveness check (no auth)
    - GET /auth/me - Current user
    - GET /observations - All records
    - POST /observations - Create, server assigns id
    - PUT /observations/{id} - Upsert one record
    - DELETE /observations/{id} - Delete one record
    - POST /observations/bulk - Upsert many records
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str | None = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip('/')
        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "HTTP"

    async def ping(self) -> bool:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
            return response.json().get("status") == "ok"
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"Remote health check failed: {e}")
            return False

    async def current_user(self) -> str | None:
        try:
            data = await self._request("GET", "/auth/me", operation="current_user")
        except AuthenticationError:
            return None
        return data.get("user_id")

    async def fetch_all(self) -> list[Observation]:
        rows = await self._request("GET", "/observations", operation="fetch_all")
        return [Observation.from_row(row) for row in rows]

    async def create(self, record: Observation) -> Observation:
        row = record.to_row()
        row.pop("id", None)
        data = await self._request("POST", "/observations", operation="create", json=row)
        return Observation.from_row(data)

    async def update(self, record: Observation) -> None:
        await self._request(
            "PUT", f"/observations/{record.id}", operation="update", json=record.to_row()
        )

    async def delete(self, record_id: str) -> None:
        await self._request("DELETE", f"/observations/{record_id}", operation="delete")

    async def bulk_upsert(self, records: list[Observation]) -> None:
        if not records:
            return
        await self._request(
            "POST",
            "/observations/bulk",
            operation="bulk_upsert",
            json=[r.to_row() for r in records],
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, path: str, operation: str, json: Any = None
    ) -> Any:
        """Send a request and translate failures into RemoteError subclasses."""
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise RemoteUnavailableError(
                f"Request timed out: {e}", operation=operation
            ) from e
        except httpx.TransportError as e:
            raise RemoteUnavailableError(
                f"Remote unreachable: {e}", operation=operation
            ) from e

        status_code = response.status_code
        if status_code == 401:
            raise AuthenticationError(
                "Remote refused credentials", operation=operation, status_code=status_code
            )
        if 400 <= status_code < 500:
            raise RemoteRejectedError(
                f"Remote rejected request: {_detail(response)}",
                operation=operation,
                status_code=status_code,
            )
        if status_code >= 500:
            raise RemoteUnavailableError(
                f"Remote server error: {_detail(response)}",
                operation=operation,
                status_code=status_code,
            )
        if status_code == 204 or not response.content:
            return None
        return response.json()


def _detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return response.text[:200]
