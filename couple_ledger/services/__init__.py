"""Services package."""

from couple_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryWorkspaceStorage,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    WorkspaceStorageInterface,
)

__all__ = [
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryWorkspaceStorage",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    "WorkspaceStorageInterface",
]
