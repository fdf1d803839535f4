"""
Audit Logger

DESIGN DECISION: Every access decision and every change to a workspace's
derived state is logged. This provides:
1. Traceability of who got in and why
2. Debugging capability for the behavioral city
3. A record of trials that expired on read

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from couple_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditSeverity,
    WorkspaceAuditAction,
)
from couple_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_access_resolved(
        self,
        workspace_id: Optional[str],
        actor_uid: Optional[str],
        has_access: bool,
        reason: str,
        mode: str,
    ) -> None:
        """Log an access decision."""
        event = AuditEventBuilder.access_resolved(
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            has_access=has_access,
            reason=reason,
            mode=mode,
        )
        await self.log(event)

    async def log_trial_expired(
        self,
        workspace_id: str,
        trial_ends_at: Optional[int],
    ) -> None:
        """Log a trial flipped to inactive on read."""
        event = AuditEventBuilder.trial_expired(
            workspace_id=workspace_id,
            trial_ends_at=trial_ends_at,
        )
        await self.log(event)

    async def log_behavioral_action(
        self,
        workspace_id: str,
        actor_uid: str,
        source: str,
        consistency_index: int,
        maturity_score: int,
    ) -> None:
        event = AuditEventBuilder.behavioral_action_applied(
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            source=source,
            consistency_index=consistency_index,
            maturity_score=maturity_score,
        )
        await self.log(event)

    async def log_behavioral_action_ignored(
        self,
        workspace_id: Optional[str],
        actor_uid: Optional[str],
        reason: str,
    ) -> None:
        event = AuditEventBuilder.behavioral_action_ignored(
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            reason=reason,
        )
        await self.log(event)

    async def log_behavioral_aging(
        self,
        workspace_id: str,
        before: dict,
        after: dict,
        dry_run: bool,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.behavioral_aging_applied(
            workspace_id=workspace_id,
            before=before,
            after=after,
            dry_run=dry_run,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_workspace_change(
        self,
        workspace_id: Optional[str],
        actor_uid: Optional[str],
        action: WorkspaceAuditAction,
        entity: str,
        entity_id: Optional[str] = None,
        summary: str = "",
        payload: Optional[dict] = None,
    ) -> bool:
        """
        Record a change a member made to a workspace entity.

        Returns False without logging when no workspace id is given.
        """
        workspace_id = (workspace_id or "").strip()
        if not workspace_id:
            return False
        event = AuditEventBuilder.workspace_entity_changed(
            workspace_id=workspace_id,
            actor_uid=actor_uid,
            action=action,
            entity=entity,
            entity_id=entity_id,
            summary=summary,
            payload=payload,
        )
        return await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        workspace_id: Optional[str] = None,
    ) -> None:
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            workspace_id=workspace_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        workspace_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            workspace_id=workspace_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a batch (e.g., one aging run).
    """
    return uuid4()
