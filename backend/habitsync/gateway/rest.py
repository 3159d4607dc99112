"""Hosted REST data service backend (PostgREST conventions) over *httpx*.

Row scoping is enforced server-side: ``set_session_context`` calls the
``set_session_context`` RPC and every later request carries the key in the
``x-session-key`` header the backend's row policy reads.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

import httpx

from habitsync.gateway.base import Entity
from habitsync.gateway.base import RemoteDataGateway
from habitsync.gateway.base import RemoteError
from habitsync.gateway.base import SessionNotFoundError
from habitsync.models.enums import ORDER_FIELDS
from habitsync.models.enums import EntityTable
from habitsync.utils.log import redact_key

logger = logging.getLogger(__name__)

_REPRESENTATION = {"Prefer": "return=representation"}


class RestGateway(RemoteDataGateway):
    def __init__(self, base_url: str, api_key: Optional[str] = None, *, client: Optional[httpx.AsyncClient] = None):
        headers = {}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(base_url=f"{base_url.rstrip('/')}/rest/v1", headers=headers)
        if client is not None:
            self._client.headers.update(headers)
        self._session_key: Optional[str] = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        table: Optional[str] = None,
    ) -> Any:
        merged = dict(headers or {})
        if self._session_key:
            merged["x-session-key"] = self._session_key

        try:
            response = await self._client.request(method, path, params=params, json=json, headers=merged)
        except httpx.HTTPError as exc:
            raise RemoteError(f"Network error: {exc}", table=table) from exc

        if response.is_error:
            raise RemoteError(self._error_message(response), status_code=response.status_code, table=table)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text[:200]}"
        if isinstance(body, dict):
            return body.get("message") or body.get("error") or f"HTTP {response.status_code}"
        return f"HTTP {response.status_code}"

    @staticmethod
    def _single(rows: Any, table: str, entity_id: Optional[str] = None) -> Entity:
        if not rows:
            message = f"{table} row {entity_id} not found" if entity_id else f"{table} returned no rows"
            raise RemoteError(message, status_code=404, table=table)
        return rows[0]

    # ------------------------------------------------------------------

    async def set_session_context(self, session_key: str) -> None:
        await self._request("POST", "/rpc/set_session_context", json={"session_key": session_key})
        self._session_key = session_key
        logger.debug(f"Session context set for {redact_key(session_key)}")

    async def create(self, table: EntityTable, payload: Dict[str, Any]) -> Entity:
        rows = await self._request("POST", f"/{table.value}", json=[payload], headers=_REPRESENTATION, table=table.value)
        return self._single(rows, table.value)

    async def update(self, table: EntityTable, entity_id: str, patch: Dict[str, Any]) -> Entity:
        rows = await self._request(
            "PATCH",
            f"/{table.value}",
            params={"id": f"eq.{entity_id}"},
            json=patch,
            headers=_REPRESENTATION,
            table=table.value,
        )
        return self._single(rows, table.value, entity_id)

    async def delete(self, table: EntityTable, entity_id: str) -> None:
        await self._request("DELETE", f"/{table.value}", params={"id": f"eq.{entity_id}"}, table=table.value)

    async def _list(self, table: EntityTable, limit: Optional[int] = None) -> List[Entity]:
        params: Dict[str, Any] = {"select": "*", "order": f"{ORDER_FIELDS[table]}.desc"}
        if limit is not None:
            params["limit"] = limit
        return await self._request("GET", f"/{table.value}", params=params, table=table.value) or []

    async def list_daily_entries(self) -> List[Entity]:
        return await self._list(EntityTable.DAILY_ENTRIES)

    async def list_weekly_entries(self) -> List[Entity]:
        return await self._list(EntityTable.WEEKLY_ENTRIES)

    async def list_latest_goals_config(self) -> List[Entity]:
        return await self._list(EntityTable.GOALS_CONFIG, limit=1)

    # ------------------------------------------------------------------

    async def create_session(self, session_key: str) -> Entity:
        rows = await self._request(
            "POST", "/sessions", json=[{"session_key": session_key}], headers=_REPRESENTATION, table="sessions"
        )
        return self._single(rows, "sessions")

    async def get_session(self, session_key: str) -> Entity:
        rows = await self._request(
            "GET", "/sessions", params={"select": "*", "session_key": f"eq.{session_key}"}, table="sessions"
        )
        if not rows:
            raise SessionNotFoundError("Session not found", status_code=404)
        return rows[0]

    async def find_session_by_pairing_code(self, pairing_code: str) -> Entity:
        rows = await self._request(
            "GET",
            "/sessions",
            params={"select": "*", "session_key": f"ilike.{pairing_code.strip().lower()}*", "limit": 2},
            table="sessions",
        )
        if not rows or len(rows) != 1:
            raise SessionNotFoundError(f"No session for pairing code {pairing_code.upper()}", status_code=404)
        return rows[0]

    async def aclose(self) -> None:
        await self._client.aclose()
