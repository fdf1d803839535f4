"""
Data Models Package

This package contains all Pydantic models used in Couple Ledger.
All data flowing through the system must conform to these schemas.
"""

from couple_ledger.models.workspace import (
    DAY_MS,
    now_ms,
    AccessReason,
    BehavioralEnergyState,
    BehavioralMaturityRole,
    BehavioralRolloutMode,
    BehavioralStructureStage,
    ProductionAccessMode,
    StatementDates,
    StatementReference,
    UserSubscriptionStatus,
    Workspace,
    WorkspaceAccessState,
    WorkspaceBehavioralMetrics,
    WorkspaceBilling,
    WorkspaceBillingStatus,
)
from couple_ledger.models.access import (
    AccessDecision,
    ActingUser,
    AdminAllowlist,
    parse_csv,
)
from couple_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    WorkspaceAuditAction,
    normalize_audit_payload,
)

__all__ = [
    # Workspace models
    "DAY_MS",
    "now_ms",
    "AccessReason",
    "BehavioralEnergyState",
    "BehavioralMaturityRole",
    "BehavioralRolloutMode",
    "BehavioralStructureStage",
    "ProductionAccessMode",
    "StatementDates",
    "StatementReference",
    "UserSubscriptionStatus",
    "Workspace",
    "WorkspaceAccessState",
    "WorkspaceBehavioralMetrics",
    "WorkspaceBilling",
    "WorkspaceBillingStatus",
    # Access models
    "AccessDecision",
    "ActingUser",
    "AdminAllowlist",
    "parse_csv",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "WorkspaceAuditAction",
    "normalize_audit_payload",
]
