"""
Access Models for Couple Ledger

Identity and access-decision values. None of these are persisted:
allowlists come from configuration, decisions are recomputed per request.
"""

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from couple_ledger.models.workspace import (
    AccessReason,
    ProductionAccessMode,
    WorkspaceAccessState,
)


def parse_csv(value: Optional[str], lowercase: bool = False) -> list[str]:
    """Split a comma-separated config value, trimming and dropping blanks."""
    items = []
    for raw in (value or "").split(","):
        item = raw.strip()
        if lowercase:
            item = item.lower()
        if item:
            items.append(item)
    return items


class AdminAllowlist(BaseModel):
    """
    Developer-admin allowlist.

    Emails are stored lower-cased; uids are compared as-is.
    Immutable for the process lifetime.
    """
    model_config = ConfigDict(frozen=True)

    emails: frozenset[str] = Field(default_factory=frozenset)
    uids: frozenset[str] = Field(default_factory=frozenset)

    @classmethod
    def from_values(
        cls,
        emails: Iterable[str] = (),
        uids: Iterable[str] = (),
    ) -> "AdminAllowlist":
        return cls(
            emails=frozenset(e.strip().lower() for e in emails if e and e.strip()),
            uids=frozenset(u for u in uids if u),
        )

    @classmethod
    def from_csv(
        cls,
        emails: Optional[str] = None,
        uids: Optional[str] = None,
    ) -> "AdminAllowlist":
        """Build from the comma-separated values found in configuration."""
        return cls(
            emails=frozenset(parse_csv(emails, lowercase=True)),
            uids=frozenset(parse_csv(uids)),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.emails) or bool(self.uids)


class ActingUser(BaseModel):
    """
    The verified identity performing a request.

    `is_developer_admin`, when set, overrides the allowlist lookup
    (the caller already resolved it server-side).
    """

    uid: Optional[str] = None
    email: Optional[str] = None
    is_developer_admin: Optional[bool] = None


class AccessDecision(BaseModel):
    """Final effective-access verdict for a workspace/user pair."""

    mode: ProductionAccessMode
    has_effective_access: bool
    has_billing_access: bool
    reason: AccessReason
    is_dev_admin: bool
    owner_is_dev_admin: bool
    access_state: WorkspaceAccessState
