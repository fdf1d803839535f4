"""
Main Orchestrator for Couple Ledger

This module ties the pure resolvers to storage and auditing, and defines
the end-to-end flows for:
1. Access (load workspace -> decide -> dev billing bypass -> write back a lazily expired trial)
2. Behavioral actions (rollout gate -> membership -> apply -> merge write),
   optionally preceded by an entity-change audit record
3. Daily behavioral aging (select workspaces -> decay -> write what changed)

DESIGN DECISION: The resolvers never touch storage or configuration.
Everything they need (allowlist, modes, policy, "now") is read here once per
call and passed in explicitly.

Behavioral writes are read-modify-write merges without transactions.
Two members acting at the same instant can lose one update; that is accepted
for a gamification signal.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from couple_ledger.access import (
    can_bypass_billing,
    has_behavioral_rollout_access,
    has_dev_admin_access,
    has_lazily_expired,
    normalize_behavioral_rollout_mode,
    normalize_workspace_billing,
    resolve_workspace_access_decision,
)
from couple_ledger.audit import AuditLogger, create_correlation_id
from couple_ledger.behavioral import (
    BehavioralPolicy,
    apply_behavioral_action,
    apply_behavioral_aging,
    summarize_state,
)
from couple_ledger.config import Settings, get_settings
from couple_ledger.models.access import AccessDecision, ActingUser, AdminAllowlist
from couple_ledger.models.audit import WorkspaceAuditAction
from couple_ledger.models.workspace import (
    AccessReason,
    BehavioralRolloutMode,
    ProductionAccessMode,
    Workspace,
    WorkspaceBehavioralMetrics,
    now_ms,
)
from couple_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryWorkspaceStorage,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    WorkspaceStorageInterface,
)


MAX_AGING_BATCH = 1000
WRITE_ATTEMPTS = 3
DEFAULT_WRITE_WAIT = wait_exponential(multiplier=1, min=2, max=10)

logger = structlog.get_logger(__name__)


class WorkspaceMembershipError(Exception):
    """The acting user is not a member of the workspace."""

    def __init__(self, workspace_id: str, uid: Optional[str]):
        self.workspace_id = workspace_id
        self.uid = uid
        super().__init__(f"User {uid!r} is not a member of workspace {workspace_id!r}")


class BehavioralActionOutcome(BaseModel):
    """Result of reporting one behavioral action."""

    applied: bool
    ignored_reason: Optional[str] = None
    metrics: Optional[WorkspaceBehavioralMetrics] = None


class AgingChange(BaseModel):
    workspace_id: str
    workspace_name: str
    before: dict[str, Any]
    after: dict[str, Any]


class AgingReport(BaseModel):
    """Result of one daily aging run."""

    dry_run: bool
    generated_at: int
    processed: int = 0
    changed: list[AgingChange] = Field(default_factory=list)
    ignored: bool = False
    ignored_reason: Optional[str] = None


async def merge_with_retry(
    storage: WorkspaceStorageInterface,
    workspace_id: str,
    fields: dict[str, Any],
    wait=DEFAULT_WRITE_WAIT,
) -> bool:
    """Merge-write a workspace, retrying transient connection failures."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(WRITE_ATTEMPTS),
        wait=wait,
        retry=retry_if_exception_type(StorageConnectionError),
        reraise=True,
    ):
        with attempt:
            return await storage.merge_workspace(workspace_id, fields)
    return False


def clamp_batch_limit(limit: Any, fallback: int) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return fallback
    return min(MAX_AGING_BATCH, max(1, value))


class WorkspaceAccessFlow:
    """
    Orchestrates the access check done on every authenticated page load.

    Flow:
    1. Load the workspace (a missing one is "not provisioned yet")
    2. Resolve the access decision
    3. Apply the developer billing bypass, when switched on
    4. Write back a trial that expired on this read
    5. Audit the outcome
    """

    def __init__(
        self,
        storage: WorkspaceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        allowlist: Optional[AdminAllowlist] = None,
        mode: Optional[ProductionAccessMode] = None,
        trial_days: Optional[int] = None,
        billing_bypass_enabled: Optional[bool] = None,
        settings: Optional[Settings] = None,
        write_wait=DEFAULT_WRITE_WAIT,
    ):
        if any(value is None for value in (allowlist, mode, trial_days, billing_bypass_enabled)):
            settings = settings or get_settings()
        self._storage = storage
        self._audit_logger = audit_logger
        self._allowlist = allowlist if allowlist is not None else settings.access.allowlist
        self._mode = mode if mode is not None else settings.access.access_mode
        self._trial_days = trial_days if trial_days is not None else settings.app.trial_days
        self._billing_bypass_enabled = (
            billing_bypass_enabled
            if billing_bypass_enabled is not None
            else settings.access.billing_bypass_enabled
        )
        self._write_wait = write_wait

    def _apply_billing_bypass(self, decision: AccessDecision, user: ActingUser) -> AccessDecision:
        """Let developer-admins in without billing while ENABLE_DEV_BILLING_BYPASS is on."""
        if decision.has_effective_access:
            return decision
        if not can_bypass_billing(user.uid, user.email, self._allowlist, self._billing_bypass_enabled):
            return decision

        logger.info("dev_billing_bypass_applied", actor_uid=user.uid)
        return decision.model_copy(update={
            "has_effective_access": True,
            "reason": AccessReason.DEV_ADMIN,
        })

    async def resolve_access(
        self,
        workspace_id: Optional[str],
        user: Optional[ActingUser] = None,
        now: Optional[int] = None,
    ) -> AccessDecision:
        now = now_ms() if now is None else now
        user = user or ActingUser()
        workspace_id = (workspace_id or "").strip()

        workspace = await self._storage.get_workspace(workspace_id) if workspace_id else None

        decision = resolve_workspace_access_decision(
            workspace,
            user,
            allowlist=self._allowlist,
            mode=self._mode,
            now=now,
            trial_days=self._trial_days,
        )
        decision = self._apply_billing_bypass(decision, user)

        if workspace is not None:
            await self._write_back_expired_trial(workspace, now)

        if self._audit_logger:
            await self._audit_logger.log_access_resolved(
                workspace_id=workspace_id or None,
                actor_uid=user.uid,
                has_access=decision.has_effective_access,
                reason=decision.reason.value,
                mode=decision.mode.value,
            )

        return decision

    async def _write_back_expired_trial(self, workspace: Workspace, now: int) -> None:
        normalized = normalize_workspace_billing(workspace, now=now, trial_days=self._trial_days)
        if not has_lazily_expired(workspace, normalized):
            return

        try:
            await merge_with_retry(
                self._storage,
                workspace.id,
                {"billing": normalized.to_document()},
                wait=self._write_wait,
            )
        except StorageError as e:
            # The decision stands; the next read expires the trial again
            logger.warning("trial_expiry_write_failed", workspace_id=workspace.id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    operation="trial_expiry_write_back",
                    error_message=str(e),
                    workspace_id=workspace.id,
                )
            return

        if self._audit_logger:
            await self._audit_logger.log_trial_expired(
                workspace_id=workspace.id,
                trial_ends_at=normalized.trial_ends_at,
            )


class BehavioralActionFlow:
    """
    Orchestrates the behavioral city updates.

    record_action: called whenever a member logs a qualifying action.
    record_entity_change: audits an entity change and records it as an action.
    run_daily_aging: called once a day by the scheduler.
    """

    def __init__(
        self,
        storage: WorkspaceStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        allowlist: Optional[AdminAllowlist] = None,
        rollout_mode: Optional[BehavioralRolloutMode] = None,
        policy: Optional[BehavioralPolicy] = None,
        aging_batch_limit: Optional[int] = None,
        settings: Optional[Settings] = None,
        write_wait=DEFAULT_WRITE_WAIT,
    ):
        if any(value is None for value in (allowlist, rollout_mode, policy, aging_batch_limit)):
            settings = settings or get_settings()
        self._storage = storage
        self._audit_logger = audit_logger
        self._allowlist = allowlist if allowlist is not None else settings.access.allowlist
        self._rollout_mode = normalize_behavioral_rollout_mode(
            rollout_mode if rollout_mode is not None else settings.behavioral.rollout_mode
        )
        self._policy = policy if policy is not None else settings.behavioral.policy()
        self._aging_batch_limit = (
            aging_batch_limit if aging_batch_limit is not None else settings.app.aging_batch_limit
        )
        self._write_wait = write_wait

    def _is_developer_admin(self, user: ActingUser) -> bool:
        if user.is_developer_admin is not None:
            return user.is_developer_admin
        return has_dev_admin_access(user.uid, user.email, self._allowlist)

    async def _ignored(
        self,
        workspace_id: Optional[str],
        user: ActingUser,
        reason: str,
    ) -> BehavioralActionOutcome:
        if self._audit_logger:
            await self._audit_logger.log_behavioral_action_ignored(
                workspace_id=workspace_id,
                actor_uid=user.uid,
                reason=reason,
            )
        return BehavioralActionOutcome(applied=False, ignored_reason=reason)

    async def record_action(
        self,
        workspace_id: Optional[str],
        user: ActingUser,
        action_at: Optional[int] = None,
        source: str = "unspecified",
    ) -> BehavioralActionOutcome:
        """
        Apply one behavioral action of `user` to a workspace and persist it.

        Returns an ignored outcome when the rollout gate is closed.

        Raises:
            ValueError: If no workspace id is given
            NotFoundError: If the workspace doesn't exist
            WorkspaceMembershipError: If the user is not a member
            StorageError: If the write fails after retries
        """
        workspace_id = (workspace_id or "").strip()

        if self._rollout_mode == BehavioralRolloutMode.OFF:
            return await self._ignored(workspace_id or None, user, "rollout_disabled")

        if not has_behavioral_rollout_access(self._rollout_mode, self._is_developer_admin(user)):
            return await self._ignored(workspace_id or None, user, "rollout_dev_only")

        if not workspace_id:
            raise ValueError("workspace_id is required")

        workspace = await self._storage.get_workspace(workspace_id)
        if workspace is None:
            raise NotFoundError(f"Workspace not found: {workspace_id}")

        if not workspace.is_member(user.uid):
            raise WorkspaceMembershipError(workspace_id, user.uid)

        metrics = apply_behavioral_action(
            workspace.behavioral_metrics,
            actor_uid=user.uid,
            action_at=action_at,
            members=workspace.members,
            policy=self._policy,
        )

        await merge_with_retry(
            self._storage,
            workspace_id,
            {"behavioralMetrics": metrics.to_document()},
            wait=self._write_wait,
        )

        logger.info(
            "behavioral_action_applied",
            workspace_id=workspace_id,
            actor_uid=user.uid,
            source=source,
        )
        if self._audit_logger:
            await self._audit_logger.log_behavioral_action(
                workspace_id=workspace_id,
                actor_uid=user.uid,
                source=source,
                consistency_index=metrics.consistency_index,
                maturity_score=metrics.maturity_score,
            )

        return BehavioralActionOutcome(applied=True, metrics=metrics)

    async def record_entity_change(
        self,
        workspace_id: Optional[str],
        user: ActingUser,
        action: WorkspaceAuditAction,
        entity: str,
        entity_id: Optional[str] = None,
        summary: str = "",
        payload: Optional[dict] = None,
        action_at: Optional[int] = None,
    ) -> BehavioralActionOutcome:
        """
        Audit a member's change to a workspace entity, then count it as a
        behavioral action (source `<entity>.<action>`).

        Raises the same errors as record_action.
        """
        if self._audit_logger:
            await self._audit_logger.log_workspace_change(
                workspace_id=workspace_id,
                actor_uid=user.uid,
                action=action,
                entity=entity,
                entity_id=entity_id,
                summary=summary,
                payload=payload,
            )

        return await self.record_action(
            workspace_id,
            user,
            action_at=action_at,
            source=f"{entity}.{action.value}",
        )

    async def _select_workspaces(
        self,
        workspace_id: Optional[str],
        limit: int,
    ) -> list[Workspace]:
        if workspace_id:
            workspace = await self._storage.get_workspace(workspace_id)
            if workspace is None:
                raise NotFoundError(f"Workspace not found: {workspace_id}")
            workspaces = [workspace]
        else:
            workspaces = await self._storage.list_workspaces(limit=limit)

        if self._rollout_mode == BehavioralRolloutMode.DEV_ADMIN:
            workspaces = [
                workspace for workspace in workspaces
                if has_dev_admin_access(workspace.owner_id, workspace.owner_email, self._allowlist)
            ]
        return workspaces

    async def run_daily_aging(
        self,
        workspace_id: Optional[str] = None,
        dry_run: bool = False,
        limit: Optional[int] = None,
        now: Optional[int] = None,
    ) -> AgingReport:
        """
        Decay the cities that went without actions.

        Only workspaces with behavioral metrics are touched, and only the
        ones whose visible state changed are written. With `dry_run` nothing
        is written but the report is the same.

        Failures are audited as system errors and re-raised.
        """
        try:
            return await self._age_workspaces(workspace_id, dry_run, limit, now)
        except Exception as e:
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"operation": "behavioral_daily_aging", "dry_run": dry_run},
                    workspace_id=workspace_id or None,
                )
            raise

    async def _age_workspaces(
        self,
        workspace_id: Optional[str],
        dry_run: bool,
        limit: Optional[int],
        now: Optional[int],
    ) -> AgingReport:
        now = now_ms() if now is None else now
        report = AgingReport(dry_run=dry_run, generated_at=now)

        if self._rollout_mode == BehavioralRolloutMode.OFF:
            report.ignored = True
            report.ignored_reason = "rollout_disabled"
            return report

        batch_limit = clamp_batch_limit(
            limit if limit is not None else self._aging_batch_limit,
            self._aging_batch_limit,
        )
        workspaces = await self._select_workspaces((workspace_id or "").strip(), batch_limit)
        correlation_id = create_correlation_id()

        for workspace in workspaces:
            report.processed += 1
            stored = workspace.behavioral_metrics
            if stored is None:
                continue

            after = apply_behavioral_aging(
                stored,
                members=workspace.members,
                now=now,
                policy=self._policy,
            )
            before_summary = summarize_state(stored)
            after_summary = summarize_state(after)
            if before_summary == after_summary:
                continue

            if not dry_run:
                await merge_with_retry(
                    self._storage,
                    workspace.id,
                    {"behavioralMetrics": after.to_document()},
                    wait=self._write_wait,
                )

            report.changed.append(AgingChange(
                workspace_id=workspace.id,
                workspace_name=workspace.name or "Unnamed workspace",
                before=before_summary,
                after=after_summary,
            ))
            if self._audit_logger:
                await self._audit_logger.log_behavioral_aging(
                    workspace_id=workspace.id,
                    before=before_summary,
                    after=after_summary,
                    dry_run=dry_run,
                    correlation_id=correlation_id,
                )

        logger.info(
            "behavioral_aging_completed",
            processed=report.processed,
            changed=len(report.changed),
            dry_run=dry_run,
        )
        return report


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[WorkspaceStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> tuple[WorkspaceAccessFlow, BehavioralActionFlow, WorkspaceStorageInterface]:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to read; the cached process settings when None
        storage: Workspace storage; in-memory when None
        audit_storage: Audit storage; in-memory when None

    Returns:
        (access_flow, behavioral_flow, storage)
    """
    settings = settings or get_settings()
    storage = storage or InMemoryWorkspaceStorage()
    audit_logger = AuditLogger(audit_storage or InMemoryAuditStorage())

    access_flow = WorkspaceAccessFlow(
        storage=storage,
        audit_logger=audit_logger,
        settings=settings,
    )
    behavioral_flow = BehavioralActionFlow(
        storage=storage,
        audit_logger=audit_logger,
        settings=settings,
    )

    return access_flow, behavioral_flow, storage
