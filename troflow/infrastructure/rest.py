"""REST-backed stores speaking the PostgREST dialect used by the hosted database."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from .stores import NetworkError, NotFoundError, PermissionDeniedError, StoreError

logger = logging.getLogger(__name__)


class RestTable:
    """Thin async client for one table behind a PostgREST endpoint."""

    def __init__(
        self,
        base_url: str,
        table: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._table = table
        self._headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            self._headers["apikey"] = api_key
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(method, self._url, params=params, json=json, headers=headers)
        except httpx.TransportError as exc:
            # connection refused, DNS, timeouts and friends
            raise NetworkError(f"{self._table}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{self._table}: {exc}") from exc

        if response.status_code >= 500:
            raise StoreError(f"{self._table}: server error {response.status_code}")
        if response.status_code in (401, 403):
            raise PermissionDeniedError(f"{self._table}: access denied ({response.status_code})")
        if response.status_code >= 400:
            detail = response.text[:200]
            raise StoreError(f"{self._table}: request rejected ({response.status_code}) {detail}")
        if not response.content:
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreError(f"{self._table}: response is not JSON") from exc
        if isinstance(payload, dict):
            return [payload]
        return list(payload)

    async def select_one(self, filters: dict[str, str]) -> dict[str, Any]:
        params = {"select": "*", **{key: f"eq.{value}" for key, value in filters.items()}}
        rows = await self._request("GET", params=params)
        if not rows:
            raise NotFoundError(f"{self._table}: no row matching {filters}")
        return rows[0]

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request("POST", json=record, prefer="return=representation")
        if not rows:
            raise StoreError(f"{self._table}: insert returned no row")
        return rows[0]

    async def upsert(self, record: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        rows = await self._request(
            "POST",
            params={"on_conflict": on_conflict},
            json=record,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise StoreError(f"{self._table}: upsert returned no row")
        return rows[0]

    async def update(self, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request(
            "PATCH",
            params={"id": f"eq.{row_id}"},
            json=changes,
            prefer="return=representation",
        )
        if not rows:
            raise NotFoundError(f"{self._table}: no row with id {row_id}")
        return rows[0]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RestDocumentStore:
    def __init__(self, table: RestTable) -> None:
        self._table = table

    async def get(self, document_id: str) -> dict[str, Any]:
        return await self._table.select_one({"id": document_id})

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        row = await self._table.insert(record)
        logger.info("Inserted document %s (%s)", row.get("id"), record.get("form_type"))
        return row

    async def update(self, document_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return await self._table.update(document_id, changes)


class RestWorkflowStore:
    def __init__(self, table: RestTable) -> None:
        self._table = table

    async def get(self, workflow_id: str, user_id: str) -> dict[str, Any]:
        return await self._table.select_one({"id": workflow_id, "user_id": user_id})

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in record.items() if key != "id" or value}
        return await self._table.insert(payload)

    async def update(self, workflow_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return await self._table.update(workflow_id, changes)


class RestVaultStore:
    def __init__(self, table: RestTable) -> None:
        self._table = table

    async def get(self, user_id: str) -> dict[str, Any] | None:
        try:
            return await self._table.select_one({"user_id": user_id})
        except NotFoundError:
            return None

    async def put(self, user_id: str, record: dict[str, Any]) -> dict[str, Any]:
        return await self._table.upsert({**record, "user_id": user_id}, on_conflict="user_id")


def build_rest_stores(
    base_url: str,
    *,
    api_key: str | None = None,
    timeout: float = 10.0,
    http_client: httpx.AsyncClient | None = None,
) -> tuple[RestDocumentStore, RestWorkflowStore, RestVaultStore]:
    """Document, workflow and vault stores sharing one connection pool."""

    client = http_client or httpx.AsyncClient(timeout=timeout)

    def table(name: str) -> RestTable:
        return RestTable(base_url, name, api_key=api_key, timeout=timeout, http_client=client)

    return (
        RestDocumentStore(table("legal_documents")),
        RestWorkflowStore(table("tro_workflows")),
        RestVaultStore(table("personal_info")),
    )
