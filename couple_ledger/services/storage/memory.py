"""
In-Memory Storage Implementation

Keeps workspace documents exactly as a document database would: camelCase
dicts, merge writes with nested maps merged recursively.

Used by the tests and for local development. Not shared between processes.
"""

import asyncio
import copy
from typing import Any, Optional
from uuid import UUID

from couple_ledger.models.audit import AuditEvent
from couple_ledger.models.workspace import Workspace
from couple_ledger.services.storage.interface import (
    AuditStorageInterface,
    NotFoundError,
    WorkspaceStorageInterface,
)


def merge_document(target: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge `fields` into a copy of `target`."""
    merged = copy.deepcopy(target)
    for key, value in fields.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_document(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class InMemoryWorkspaceStorage(WorkspaceStorageInterface):
    """
    Dict-backed workspace storage.

    Documents are copied on the way in and out so callers can never mutate
    stored state by accident.
    """

    def __init__(self, documents: Optional[dict[str, dict[str, Any]]] = None):
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self._lock = asyncio.Lock()

    def put_workspace(self, workspace: Workspace) -> None:
        """Store a full workspace document (replaces any existing one)."""
        self._documents[workspace.id] = workspace.to_document()

    def get_document(self, workspace_id: str) -> Optional[dict[str, Any]]:
        document = self._documents.get(workspace_id)
        return copy.deepcopy(document) if document is not None else None

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        document = self._documents.get(workspace_id)
        if document is None:
            return None
        return Workspace.model_validate({**copy.deepcopy(document), "id": workspace_id})

    async def list_workspaces(self, limit: int = 200) -> list[Workspace]:
        workspace_ids = list(self._documents)[:max(0, limit)]
        return [
            Workspace.model_validate({**copy.deepcopy(self._documents[wid]), "id": wid})
            for wid in workspace_ids
        ]

    async def merge_workspace(
        self,
        workspace_id: str,
        fields: dict[str, Any],
    ) -> bool:
        async with self._lock:
            if workspace_id not in self._documents:
                raise NotFoundError(f"Workspace not found: {workspace_id}")
            self._documents[workspace_id] = merge_document(
                self._documents[workspace_id], fields
            )
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_workspace(self, workspace_id: str) -> list[AuditEvent]:
        return [event for event in self._events if event.workspace_id == workspace_id]

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return [event for event in self._events if event.correlation_id == correlation_id]
