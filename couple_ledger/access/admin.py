"""
Developer-Admin Allowlist Checks

A developer-admin is an operator identity listed in configuration
(DEV_ADMIN_EMAILS / DEV_ADMIN_UIDS). Membership is a plain set test:
emails compare case-insensitively, uids exactly.

An unconfigured allowlist grants nothing (fail closed).
"""

from typing import Optional

from couple_ledger.models.access import AdminAllowlist


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def has_configured_dev_admin_allowlist(allowlist: AdminAllowlist) -> bool:
    return allowlist.is_configured


def has_dev_admin_access(
    uid: Optional[str],
    email: Optional[str],
    allowlist: AdminAllowlist,
) -> bool:
    """
    Check if an identity is on the developer-admin allowlist.

    Empty uid/email never match, even against an allowlist that
    somehow contains an empty string.
    """
    if not allowlist.is_configured:
        return False

    normalized_email = normalize_email(email)
    if uid and uid in allowlist.uids:
        return True
    if normalized_email and normalized_email in allowlist.emails:
        return True
    return False


def can_bypass_billing(
    uid: Optional[str],
    email: Optional[str],
    allowlist: AdminAllowlist,
    enabled: bool,
) -> bool:
    """Developer billing bypass: only when switched on, and only for developer-admins."""
    if not enabled:
        return False
    return has_dev_admin_access(uid, email, allowlist)
