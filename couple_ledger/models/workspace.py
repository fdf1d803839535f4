"""
Workspace Data Models for Couple Ledger

A workspace is the shared household account: its members, its billing
record and its behavioral ("financial city") metrics.

DESIGN DECISION: Timestamps are integer epoch milliseconds, exactly as they
are persisted. Persisted documents use camelCase keys, so every model accepts
both snake_case and camelCase on input and dumps camelCase with
`model_dump(by_alias=True)`.

All enums are closed sets. Code that branches on them must handle every
member explicitly.
"""

import time
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel


DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class WorkspaceBillingStatus(str, Enum):
    """
    Subscription status of a workspace.

    Only TRIALING -> INACTIVE happens automatically (lazy trial expiry).
    Every other transition is written by billing webhooks or admins.
    """
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


class UserSubscriptionStatus(str, Enum):
    """User-facing subscription status shown on the account screen."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIAL = "trial"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class ProductionAccessMode(str, Enum):
    """
    How access is decided when billing does not grant it.

    BILLING_ONLY is the production mode. WORKSPACE_INTERNAL_BYPASS is the
    legacy escape hatch for internal workspaces.
    """
    WORKSPACE_INTERNAL_BYPASS = "workspace_internal_bypass"
    BILLING_ONLY = "billing_only"


class AccessReason(str, Enum):
    """Why an access decision came out the way it did."""
    BILLING = "billing"
    DEV_ADMIN = "dev_admin"
    WORKSPACE_INTERNAL_BYPASS = "workspace_internal_bypass"
    BLOCKED = "blocked"


class BehavioralRolloutMode(str, Enum):
    """Tri-state feature flag for the behavioral city."""
    OFF = "off"
    DEV_ADMIN = "dev_admin"
    ALL = "all"


class BehavioralEnergyState(str, Enum):
    """Energy of the city (or of one member), driven by inactivity."""
    ENERGIZED = "energized"
    FLICKER = "flicker"
    BLACKOUT_PARTIAL = "blackout_partial"
    ABANDONED = "abandoned"


class BehavioralMaturityRole(str, Enum):
    """Role unlocked by the cumulative maturity score."""
    ARCHITECT = "architect"
    BUILDER = "builder"
    URBAN_MANAGER = "urban_manager"
    MAGNATE = "magnate"


class BehavioralStructureStage(str, Enum):
    """Stage of the city buildings, driven by the maturity score."""
    RESIDENCE = "residence"
    GROWTH = "growth"
    CONSOLIDATION = "consolidation"


class _StoredModel(BaseModel):
    """Base for persisted records: camelCase on the wire, snake_case in code."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Convert to the camelCase document stored by the persistence layer."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# BILLING
# =============================================================================

class WorkspaceBilling(_StoredModel):
    """
    Billing record of a workspace.

    Written by the checkout/webhook handlers. Read through
    `normalize_workspace_billing`, never trusted raw: a trial whose end has
    passed is still stored as TRIALING until someone reads it.
    """

    status: WorkspaceBillingStatus = Field(
        default=WorkspaceBillingStatus.TRIALING,
        description="Stored subscription status"
    )
    plan: Optional[str] = Field(
        default=None,
        description="Plan identifier (e.g. 'monthly')"
    )
    trial_ends_at: Optional[int] = Field(
        default=None,
        description="End of the trial (epoch ms)"
    )
    current_period_end: Optional[int] = Field(
        default=None,
        description="End of the paid period (epoch ms)"
    )
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    updated_at: Optional[int] = Field(
        default=None,
        description="Last write (epoch ms)"
    )

    @field_validator('status', mode='before')
    @classmethod
    def unknown_status_is_inactive(cls, v: Any) -> Any:
        """Unrecognised statuses never grant access."""
        if isinstance(v, WorkspaceBillingStatus):
            return v
        normalized = str(v or "").strip().lower()
        try:
            return WorkspaceBillingStatus(normalized)
        except ValueError:
            return WorkspaceBillingStatus.INACTIVE


class WorkspaceAccessState(BaseModel):
    """Access view of the normalized billing record (computed, not persisted)."""

    status: WorkspaceBillingStatus
    has_access: bool
    trial_ends_at: Optional[int] = None
    trial_days_left: Optional[int] = Field(default=None, ge=0)


# =============================================================================
# BEHAVIORAL METRICS
# =============================================================================

class WorkspaceBehavioralMetrics(_StoredModel):
    """
    The "financial city" of a workspace.

    Created lazily on the first behavioral action, mutated only through
    `apply_behavioral_action` / `apply_behavioral_aging`, never deleted.
    Derived fields (energy states, role, stage, shared index) are recomputed
    on every read.
    """

    consistency_index: int = Field(
        default=0,
        ge=0,
        description="Day streak of the actor of the latest action"
    )
    shared_consistency_index: int = Field(
        default=100,
        ge=0,
        le=100,
        description="Percentage of members active in the last 24h"
    )
    maturity_score: int = Field(
        default=0,
        ge=0,
        description="Cumulative score, never decreases"
    )
    maturity_role: BehavioralMaturityRole = BehavioralMaturityRole.ARCHITECT
    structure_stage: BehavioralStructureStage = BehavioralStructureStage.RESIDENCE
    city_energy_state: BehavioralEnergyState = BehavioralEnergyState.ENERGIZED
    shared_consistency_state: BehavioralEnergyState = BehavioralEnergyState.ENERGIZED
    inactive_days: int = Field(
        default=0,
        ge=0,
        description="Whole days since the latest action of anyone"
    )
    last_action_at: dict[str, int] = Field(
        default_factory=dict,
        description="Latest action per actor uid (epoch ms)"
    )
    member_consistency_index: dict[str, int] = Field(
        default_factory=dict,
        description="Day streak per actor uid"
    )
    member_energy_state: dict[str, BehavioralEnergyState] = Field(
        default_factory=dict,
        description="Energy state per current member"
    )
    updated_at: Optional[int] = None

    @property
    def last_action_timestamp(self) -> Optional[int]:
        """Most recent action across every actor, if any."""
        if not self.last_action_at:
            return None
        return max(self.last_action_at.values())


# =============================================================================
# WORKSPACE
# =============================================================================

class Workspace(_StoredModel):
    """
    A shared household account.

    Owned collectively by its members. Created on signup, never hard-deleted.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Workspace document ID"
    )
    name: str = Field(
        default="",
        description="Display name"
    )
    members: list[str] = Field(
        default_factory=list,
        description="Member uids (order irrelevant)"
    )
    owner_id: Optional[str] = None
    owner_email: Optional[str] = None
    created_at: Optional[int] = Field(
        default=None,
        description="Creation time (epoch ms)"
    )
    pending_invites: list[str] = Field(default_factory=list)
    billing: Optional[WorkspaceBilling] = None
    behavioral_metrics: Optional[WorkspaceBehavioralMetrics] = None

    @field_validator('members', mode='before')
    @classmethod
    def drop_blank_members(cls, v: Any) -> Any:
        """Stored member lists occasionally carry empty entries."""
        if not isinstance(v, (list, tuple, set, frozenset)):
            return []
        return [str(member) for member in v if member]

    def is_member(self, uid: Optional[str]) -> bool:
        """Check if a uid belongs to this workspace."""
        return bool(uid) and uid in self.members


# =============================================================================
# STATEMENT CYCLE
# =============================================================================

class StatementReference(BaseModel):
    """The billing cycle (month/year) a card purchase belongs to."""
    model_config = ConfigDict(frozen=True)

    month: int = Field(..., ge=1, le=12)
    year: int

    @property
    def key(self) -> str:
        """Sortable `YYYY-MM` key."""
        return f"{self.year}-{self.month:02d}"


class StatementDates(BaseModel):
    """Closing and due instants of a statement (epoch ms, local noon)."""
    model_config = ConfigDict(frozen=True)

    closing_date: int
    due_date: int
