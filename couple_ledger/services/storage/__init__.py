"""
Storage Services Package

Provides abstract interfaces and an in-memory implementation for workspace
and audit storage. Production backends implement the same interfaces.
"""

from couple_ledger.services.storage.interface import (
    AuditStorageInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    WorkspaceStorageInterface,
)
from couple_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryWorkspaceStorage,
    merge_document,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "WorkspaceStorageInterface",
    # Exceptions
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryWorkspaceStorage",
    "merge_document",
]
