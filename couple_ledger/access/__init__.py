"""
Access Package

Billing state, developer-admin allowlist, access decisions and the
behavioral rollout gate. Everything here is pure: configuration and time
are passed in by the caller.
"""

from couple_ledger.access.admin import (
    can_bypass_billing,
    has_configured_dev_admin_allowlist,
    has_dev_admin_access,
    normalize_email,
)
from couple_ledger.access.billing import (
    ACCESS_STATUSES,
    TRIAL_DAYS,
    get_default_trial_ends_at,
    get_workspace_access_state,
    has_lazily_expired,
    normalize_workspace_billing,
    to_user_subscription_status,
    trial_days_left,
)
from couple_ledger.access.policy import (
    PRODUCTION_ACCESS_MODE,
    normalize_access_mode,
    resolve_workspace_access_decision,
)
from couple_ledger.access.rollout import (
    has_behavioral_rollout_access,
    normalize_behavioral_rollout_mode,
)

__all__ = [
    # Developer-admin
    "can_bypass_billing",
    "has_configured_dev_admin_allowlist",
    "has_dev_admin_access",
    "normalize_email",
    # Billing
    "ACCESS_STATUSES",
    "TRIAL_DAYS",
    "get_default_trial_ends_at",
    "get_workspace_access_state",
    "has_lazily_expired",
    "normalize_workspace_billing",
    "to_user_subscription_status",
    "trial_days_left",
    # Access decision
    "PRODUCTION_ACCESS_MODE",
    "normalize_access_mode",
    "resolve_workspace_access_decision",
    # Rollout
    "has_behavioral_rollout_access",
    "normalize_behavioral_rollout_mode",
]
