"""
Workspace Access Decision

Combines the billing state of a workspace with the developer-admin
allowlist and the configured access mode.

Decision order:
1. Billing grants access -> BILLING. Always wins, in every mode.
2. Mode WORKSPACE_INTERNAL_BYPASS only:
   a. acting user is a developer-admin -> DEV_ADMIN
   b. workspace owner is a developer-admin -> WORKSPACE_INTERNAL_BYPASS
3. Otherwise -> BLOCKED.
"""

from typing import Any, Optional

from couple_ledger.access.admin import has_dev_admin_access
from couple_ledger.access.billing import TRIAL_DAYS, get_workspace_access_state
from couple_ledger.models.access import AccessDecision, ActingUser, AdminAllowlist
from couple_ledger.models.workspace import (
    AccessReason,
    ProductionAccessMode,
    Workspace,
    now_ms,
)


PRODUCTION_ACCESS_MODE = ProductionAccessMode.BILLING_ONLY


def normalize_access_mode(value: Any) -> ProductionAccessMode:
    """Read a configured access mode. Anything unrecognised means billing-only."""
    if isinstance(value, ProductionAccessMode):
        return value
    normalized = str(value or "").strip().lower()
    if normalized == ProductionAccessMode.WORKSPACE_INTERNAL_BYPASS.value:
        return ProductionAccessMode.WORKSPACE_INTERNAL_BYPASS
    return ProductionAccessMode.BILLING_ONLY


def resolve_workspace_access_decision(
    workspace: Optional[Workspace],
    user: Optional[ActingUser] = None,
    allowlist: Optional[AdminAllowlist] = None,
    mode: ProductionAccessMode = PRODUCTION_ACCESS_MODE,
    now: Optional[int] = None,
    trial_days: int = TRIAL_DAYS,
) -> AccessDecision:
    """
    Decide whether `user` may use `workspace`.

    Args:
        workspace: The workspace, or None when not provisioned yet
        user: The verified acting identity
        allowlist: Developer-admin allowlist. None means empty (nobody is admin).
        mode: Access mode applied when billing does not grant access.
            Unrecognised values are read as billing-only.
        now: Evaluation time (epoch ms), read once when omitted
    """
    now = now_ms() if now is None else now
    mode = normalize_access_mode(mode)
    allowlist = allowlist or AdminAllowlist()
    user = user or ActingUser()

    access_state = get_workspace_access_state(workspace, now=now, trial_days=trial_days)
    has_billing_access = workspace is not None and access_state.has_access

    if user.is_developer_admin is not None:
        is_dev_admin = user.is_developer_admin
    else:
        is_dev_admin = has_dev_admin_access(user.uid, user.email, allowlist)

    owner_is_dev_admin = has_dev_admin_access(
        workspace.owner_id if workspace else None,
        workspace.owner_email if workspace else None,
        allowlist,
    )

    def decide(has_access: bool, reason: AccessReason) -> AccessDecision:
        return AccessDecision(
            mode=mode,
            has_effective_access=has_access,
            has_billing_access=has_billing_access,
            reason=reason,
            is_dev_admin=is_dev_admin,
            owner_is_dev_admin=owner_is_dev_admin,
            access_state=access_state,
        )

    if has_billing_access:
        return decide(True, AccessReason.BILLING)

    if mode == ProductionAccessMode.WORKSPACE_INTERNAL_BYPASS:
        if is_dev_admin:
            return decide(True, AccessReason.DEV_ADMIN)
        if owner_is_dev_admin:
            return decide(True, AccessReason.WORKSPACE_INTERNAL_BYPASS)
    elif mode != ProductionAccessMode.BILLING_ONLY:
        raise ValueError(f"Unhandled access mode: {mode!r}")

    return decide(False, AccessReason.BLOCKED)
