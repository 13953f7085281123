"""Persistence contracts for documents, workflows and the personal data vault."""
from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol


class StoreError(RuntimeError):
    """Raised when a store rejects or fails a request."""


class NetworkError(StoreError):
    """Connectivity-class failure: the request may never have reached the store."""


class NotFoundError(StoreError):
    """Raised when the requested row does not exist."""


class PermissionDeniedError(StoreError):
    """The store refused the caller (row level security, bad key)."""


class DocumentStore(Protocol):
    """Rows of the ``legal_documents`` table.

    A row carries ``id``, ``title``, ``form_type``, ``workflow_id``,
    ``content`` (field values), ``metadata`` (``fieldPositions`` and friends),
    ``user_id`` and ``updated_at``.
    """

    async def get(self, document_id: str) -> dict[str, Any]: ...

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, document_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...


class WorkflowStore(Protocol):
    """Rows of the ``tro_workflows`` table, in :meth:`Workflow.to_record` layout."""

    async def get(self, workflow_id: str, user_id: str) -> dict[str, Any]: ...

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, workflow_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...


class VaultStore(Protocol):
    async def get(self, user_id: str) -> dict[str, Any] | None: ...

    async def put(self, user_id: str, record: dict[str, Any]) -> dict[str, Any]: ...


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryDocumentStore:
    """Process-local document table for development and tests."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}

    async def get(self, document_id: str) -> dict[str, Any]:
        row = self._rows.get(document_id)
        if row is None:
            raise NotFoundError(f"document {document_id} not found")
        return copy.deepcopy(row)

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(record)
        row.setdefault("id", uuid.uuid4().hex)
        row.setdefault("metadata", {})
        row.setdefault("updated_at", utcnow_iso())
        self._rows[row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, document_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        row = self._rows.get(document_id)
        if row is None:
            raise NotFoundError(f"document {document_id} not found")
        row.update(copy.deepcopy(changes))
        return copy.deepcopy(row)

    def reset(self) -> None:
        self._rows.clear()


class InMemoryWorkflowStore:
    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}

    async def get(self, workflow_id: str, user_id: str) -> dict[str, Any]:
        row = self._rows.get(workflow_id)
        if row is None or row.get("user_id") != user_id:
            raise NotFoundError(f"workflow {workflow_id} not found")
        return copy.deepcopy(row)

    async def insert(self, record: dict[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(record)
        if not row.get("id"):
            row["id"] = uuid.uuid4().hex
        self._rows[row["id"]] = row
        return copy.deepcopy(row)

    async def update(self, workflow_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        row = self._rows.get(workflow_id)
        if row is None:
            raise NotFoundError(f"workflow {workflow_id} not found")
        row.update(copy.deepcopy(changes))
        return copy.deepcopy(row)

    def reset(self) -> None:
        self._rows.clear()


class InMemoryVaultStore:
    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}

    async def get(self, user_id: str) -> dict[str, Any] | None:
        row = self._rows.get(user_id)
        return copy.deepcopy(row) if row is not None else None

    async def put(self, user_id: str, record: dict[str, Any]) -> dict[str, Any]:
        self._rows[user_id] = {**copy.deepcopy(record), "user_id": user_id}
        return copy.deepcopy(self._rows[user_id])

    def reset(self) -> None:
        self._rows.clear()
