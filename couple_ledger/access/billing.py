"""
Workspace Billing State

Derives the effective subscription status of a workspace from its stored
billing record and the current time.

DESIGN DECISION: Trial expiry is lazy. There is no scheduler: a TRIALING
record whose trial has ended is reported as INACTIVE the first time it is
read after the end, and the caller may write that back.

A missing workspace or billing record is "not provisioned yet", which means
a fresh trial, never an error and never "blocked".
"""

from typing import Optional

import structlog

from couple_ledger.models.workspace import (
    DAY_MS,
    UserSubscriptionStatus,
    Workspace,
    WorkspaceAccessState,
    WorkspaceBilling,
    WorkspaceBillingStatus,
    now_ms,
)


TRIAL_DAYS = 7

ACCESS_STATUSES = frozenset({
    WorkspaceBillingStatus.ACTIVE,
    WorkspaceBillingStatus.TRIALING,
})

logger = structlog.get_logger(__name__)


def get_default_trial_ends_at(created_at: int, trial_days: int = TRIAL_DAYS) -> int:
    return created_at + trial_days * DAY_MS


def normalize_workspace_billing(
    workspace: Optional[Workspace],
    now: Optional[int] = None,
    trial_days: int = TRIAL_DAYS,
) -> WorkspaceBilling:
    """
    Return the billing record as it should be seen right now.

    - No billing record: a trial from `created_at` (or from now when the
      workspace itself is missing).
    - TRIALING past its end: flipped to INACTIVE, stamped with `now`.
    - Anything else: returned as stored, with `trial_ends_at` backfilled.

    The input is never modified.
    """
    now = now_ms() if now is None else now
    created_at = (workspace.created_at if workspace else None) or now
    billing = workspace.billing if workspace else None
    trial_ends_at = (
        (billing.trial_ends_at if billing else None)
        or get_default_trial_ends_at(created_at, trial_days)
    )

    if billing is None:
        status = (
            WorkspaceBillingStatus.TRIALING
            if now <= trial_ends_at
            else WorkspaceBillingStatus.INACTIVE
        )
        return WorkspaceBilling(status=status, trial_ends_at=trial_ends_at, updated_at=now)

    # A stored trial without an end expires at the backfilled default end
    if billing.status == WorkspaceBillingStatus.TRIALING and now > trial_ends_at:
        logger.debug(
            "trial_expired",
            workspace_id=workspace.id,
            trial_ends_at=trial_ends_at,
        )
        return billing.model_copy(update={
            "status": WorkspaceBillingStatus.INACTIVE,
            "trial_ends_at": trial_ends_at,
            "updated_at": now,
        })

    return billing.model_copy(update={"trial_ends_at": trial_ends_at})


def has_lazily_expired(workspace: Optional[Workspace], normalized: WorkspaceBilling) -> bool:
    """Did normalization flip a stored trial to inactive (i.e. is there something to write back)?"""
    if workspace is None or workspace.billing is None:
        return False
    return (
        workspace.billing.status == WorkspaceBillingStatus.TRIALING
        and normalized.status == WorkspaceBillingStatus.INACTIVE
    )


def trial_days_left(trial_ends_at: Optional[int], now: int) -> Optional[int]:
    """Whole days (rounded up) until the trial ends, never negative."""
    if not trial_ends_at:
        return None
    remaining = trial_ends_at - now
    return max(0, -(-remaining // DAY_MS))


def get_workspace_access_state(
    workspace: Optional[Workspace],
    now: Optional[int] = None,
    trial_days: int = TRIAL_DAYS,
) -> WorkspaceAccessState:
    """
    Access view of a workspace's billing.

    `has_access` is true iff the normalized status is ACTIVE or TRIALING.
    Safe to call with no workspace.
    """
    now = now_ms() if now is None else now
    billing = normalize_workspace_billing(workspace, now=now, trial_days=trial_days)

    return WorkspaceAccessState(
        status=billing.status,
        has_access=billing.status in ACCESS_STATUSES,
        trial_ends_at=billing.trial_ends_at,
        trial_days_left=trial_days_left(billing.trial_ends_at, now),
    )


def to_user_subscription_status(status: WorkspaceBillingStatus) -> UserSubscriptionStatus:
    """Map a billing status to the status shown to the user."""
    if not isinstance(status, WorkspaceBillingStatus):
        try:
            status = WorkspaceBillingStatus(str(status or "").strip().lower())
        except ValueError:
            return UserSubscriptionStatus.INACTIVE

    if status == WorkspaceBillingStatus.ACTIVE:
        return UserSubscriptionStatus.ACTIVE
    if status == WorkspaceBillingStatus.TRIALING:
        return UserSubscriptionStatus.TRIAL
    if status == WorkspaceBillingStatus.PAST_DUE:
        return UserSubscriptionStatus.PAST_DUE
    if status == WorkspaceBillingStatus.CANCELED:
        return UserSubscriptionStatus.CANCELED
    if status == WorkspaceBillingStatus.INACTIVE:
        return UserSubscriptionStatus.INACTIVE
    raise ValueError(f"Unhandled billing status: {status!r}")
