"""
Abstract Storage Interface

DESIGN DECISION: The flows only talk to these interfaces. This allows us to:
1. Back them with a document database in production
2. Use in-memory storage for testing
3. Keep the pure resolvers completely unaware of persistence

Workspaces are documents updated with merge writes: a write names the
fields it changes and leaves every other field untouched.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from couple_ledger.models.audit import AuditEvent
from couple_ledger.models.workspace import Workspace


class WorkspaceStorageInterface(ABC):
    """
    Abstract interface for workspace storage operations.
    """

    @abstractmethod
    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        """
        Retrieve a workspace by its ID.

        Returns:
            The workspace if found, None otherwise

        Raises:
            StorageConnectionError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def list_workspaces(self, limit: int = 200) -> list[Workspace]:
        """
        List workspaces (no particular order).

        Args:
            limit: Maximum number of results
        """
        pass

    @abstractmethod
    async def merge_workspace(
        self,
        workspace_id: str,
        fields: dict[str, Any],
    ) -> bool:
        """
        Merge-write fields of a workspace document.

        Args:
            workspace_id: The workspace's document ID
            fields: camelCase document fields to write (nested maps are merged)

        Returns:
            True if written successfully

        Raises:
            NotFoundError: If the workspace doesn't exist
            StorageConnectionError: If the backend cannot be reached
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_workspace(self, workspace_id: str) -> list[AuditEvent]:
        """
        Get all events of a workspace in chronological order.
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one aging run).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StorageConnectionError(StorageError):
    """Could not reach the storage backend (transient, safe to retry)."""
    pass
