"""
Audit Models for Couple Ledger

Every access decision and every change to a workspace's derived state is
logged for audit purposes. This provides:
1. Traceability of who was let in and why
2. Debugging information when the city state looks wrong
3. A history of billing expiries that happened lazily on read

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Access
    ACCESS_GRANTED = "access_granted"
    ACCESS_BLOCKED = "access_blocked"
    TRIAL_EXPIRED = "trial_expired"

    # Behavioral city
    BEHAVIORAL_ACTION_APPLIED = "behavioral_action_applied"
    BEHAVIORAL_ACTION_IGNORED = "behavioral_action_ignored"
    BEHAVIORAL_AGING_APPLIED = "behavioral_aging_applied"

    # Workspace entity changes (transactions, bills, statements)
    WORKSPACE_ENTITY_CHANGED = "workspace_entity_changed"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class WorkspaceAuditAction(str, Enum):
    """What a member did to a workspace entity."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MARK_PAID = "mark_paid"
    MARK_PENDING = "mark_pending"
    MARK_SKIPPED = "mark_skipped"
    TRANSFER = "transfer"
    RECONCILE = "reconcile"


def normalize_audit_payload(value: Any) -> Any:
    """
    Convert an arbitrary payload into JSON-safe values.

    Dates become ISO strings, enums their values, containers are walked
    recursively and anything else unknown is stringified.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, BaseModel):
        return normalize_audit_payload(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(key): normalize_audit_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_audit_payload(item) for item in value]
    return str(value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - which workspace and who
    workspace_id: Optional[str] = Field(
        default=None,
        description="Workspace the event relates to"
    )
    actor_uid: Optional[str] = Field(
        default=None,
        description="Uid of the user who triggered the event"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'billing', 'behavioral_metrics', 'transaction')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one aging run)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "workspace_id": self.workspace_id,
            "actor_uid": self.actor_uid,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": normalize_audit_payload(self.details),
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.access_resolved(workspace_id, uid, decision)
        event = AuditEventBuilder.trial_expired(workspace_id, trial_ends_at)
    """

    @staticmethod
    def access_resolved(
        workspace_id: Optional[str],
        actor_uid: Optional[str],
        has_access: bool,
        reason: str,
        mode: str,
    ) -> AuditEvent:
        if has_access:
            return AuditEvent(
                event_type=AuditEventType.ACCESS_GRANTED,
                workspace_id=workspace_id,
                actor_uid=actor_uid,
                entity_type="workspace",
                entity_id=workspace_id,
                description=f"Access granted ({reason})",
                details={"reason": reason, "mode": mode},
                is_user_action=True,
            )
        return AuditEvent(
            event_type=AuditEventType.ACCESS_BLOCKED,
            severity=AuditSeverity.WARNING,
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            entity_type="workspace",
            entity_id=workspace_id,
            description="Access blocked: no billing access",
            details={"reason": reason, "mode": mode},
            is_user_action=True,
        )

    @staticmethod
    def trial_expired(
        workspace_id: str,
        trial_ends_at: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIAL_EXPIRED,
            workspace_id=workspace_id,
            entity_type="billing",
            entity_id=workspace_id,
            description="Trial expired, billing status set to inactive",
            details={"trial_ends_at": trial_ends_at},
        )

    @staticmethod
    def behavioral_action_applied(
        workspace_id: str,
        actor_uid: str,
        source: str,
        consistency_index: int,
        maturity_score: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BEHAVIORAL_ACTION_APPLIED,
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            entity_type="behavioral_metrics",
            entity_id=workspace_id,
            description=f"Behavioral action applied from {source}",
            details={
                "source": source,
                "consistency_index": consistency_index,
                "maturity_score": maturity_score,
            },
            is_user_action=True,
        )

    @staticmethod
    def behavioral_action_ignored(
        workspace_id: Optional[str],
        actor_uid: Optional[str],
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BEHAVIORAL_ACTION_IGNORED,
            severity=AuditSeverity.DEBUG,
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            entity_type="behavioral_metrics",
            entity_id=workspace_id,
            description=f"Behavioral action ignored: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def behavioral_aging_applied(
        workspace_id: str,
        before: dict,
        after: dict,
        dry_run: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BEHAVIORAL_AGING_APPLIED,
            workspace_id=workspace_id,
            entity_type="behavioral_metrics",
            entity_id=workspace_id,
            correlation_id=correlation_id,
            description="Behavioral aging applied" + (" (dry run)" if dry_run else ""),
            details={"before": before, "after": after, "dry_run": dry_run},
        )

    @staticmethod
    def workspace_entity_changed(
        workspace_id: str,
        actor_uid: Optional[str],
        action: WorkspaceAuditAction,
        entity: str,
        entity_id: Optional[str] = None,
        summary: str = "",
        payload: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WORKSPACE_ENTITY_CHANGED,
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            entity_type=entity,
            entity_id=entity_id,
            description=summary or f"{entity} {action.value}",
            details={
                "action": action.value,
                "payload": normalize_audit_payload(payload or {}),
            },
            is_user_action=True,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        workspace_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            workspace_id=workspace_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        workspace_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            workspace_id=workspace_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
