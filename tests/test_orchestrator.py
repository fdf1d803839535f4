"""
Tests for the access and behavioral flows against in-memory storage.
"""

import asyncio

import pytest
from tenacity import wait_none

from couple_ledger.audit import AuditLogger
from couple_ledger.behavioral import BehavioralPolicy, apply_behavioral_action
from couple_ledger.config import Settings
from couple_ledger.models import (
    DAY_MS,
    AccessReason,
    ActingUser,
    AdminAllowlist,
    AuditEventType,
    BehavioralRolloutMode,
    ProductionAccessMode,
    Workspace,
    WorkspaceAuditAction,
    WorkspaceBilling,
    WorkspaceBillingStatus,
)
from couple_ledger.orchestrator import (
    BehavioralActionFlow,
    WorkspaceAccessFlow,
    WorkspaceMembershipError,
    clamp_batch_limit,
    create_app_components,
    merge_with_retry,
)
from couple_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryWorkspaceStorage,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)


T0 = 1_767_225_600_000 + 15 * 60 * 60 * 1000  # 2026-01-01T15:00:00Z

ALICE = ActingUser(uid="alice", email="alice@example.com")
BOB = ActingUser(uid="bob", email="bob@example.com")
ADMIN = ActingUser(uid="admin-uid", email="dev@example.com")


# =============================================================================
# FIXTURES
# =============================================================================

class FlakyWorkspaceStorage(InMemoryWorkspaceStorage):
    """Fails the first `failures` merge writes with a connection error."""

    def __init__(self, failures, error=StorageConnectionError):
        super().__init__()
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def merge_workspace(self, workspace_id, fields):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error("backend unavailable")
        return await super().merge_workspace(workspace_id, fields)


def make_workspace(workspace_id="ws-1", members=("alice", "bob"), owner_id="alice",
                   billing=None, metrics=None):
    return Workspace(
        id=workspace_id,
        name=f"Casa {workspace_id}",
        members=list(members),
        owner_id=owner_id,
        created_at=T0,
        billing=billing,
        behavioral_metrics=metrics,
    )


@pytest.fixture
def allowlist():
    return AdminAllowlist.from_csv(emails="dev@example.com", uids="admin-uid")


@pytest.fixture
def storage():
    storage = InMemoryWorkspaceStorage()
    storage.put_workspace(make_workspace())
    return storage


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


def event_types(audit_storage):
    return [event.event_type for event in audit_storage.events]


def make_behavioral_flow(storage, audit_logger, allowlist, rollout_mode=BehavioralRolloutMode.ALL,
                         aging_batch_limit=200):
    return BehavioralActionFlow(
        storage=storage,
        audit_logger=audit_logger,
        allowlist=allowlist,
        rollout_mode=rollout_mode,
        policy=BehavioralPolicy(),
        aging_batch_limit=aging_batch_limit,
        write_wait=wait_none(),
    )


def make_access_flow(storage, audit_logger, allowlist, mode=ProductionAccessMode.BILLING_ONLY,
                     billing_bypass_enabled=False):
    return WorkspaceAccessFlow(
        storage=storage,
        audit_logger=audit_logger,
        allowlist=allowlist,
        mode=mode,
        trial_days=7,
        billing_bypass_enabled=billing_bypass_enabled,
        write_wait=wait_none(),
    )


# =============================================================================
# ACCESS FLOW
# =============================================================================

class TestWorkspaceAccessFlow:
    """Tests for WorkspaceAccessFlow."""

    def test_trial_access_granted(self, storage, audit_logger, audit_storage, allowlist):
        flow = make_access_flow(storage, audit_logger, allowlist)

        decision = asyncio.run(flow.resolve_access("ws-1", ALICE, now=T0 + DAY_MS))

        assert decision.has_effective_access is True
        assert decision.reason == AccessReason.BILLING
        assert event_types(audit_storage) == [AuditEventType.ACCESS_GRANTED]
        assert "billing" not in storage.get_document("ws-1")

    def test_expired_trial_written_back(self, audit_logger, audit_storage, allowlist):
        """A trial found expired on read is persisted as inactive."""
        storage = InMemoryWorkspaceStorage()
        billing = WorkspaceBilling(
            status=WorkspaceBillingStatus.TRIALING,
            trial_ends_at=T0 + DAY_MS,
            stripe_customer_id="cus_1",
        )
        storage.put_workspace(make_workspace(billing=billing))
        flow = make_access_flow(storage, audit_logger, allowlist)
        now = T0 + 3 * DAY_MS

        decision = asyncio.run(flow.resolve_access("ws-1", ALICE, now=now))

        assert decision.has_effective_access is False
        assert decision.reason == AccessReason.BLOCKED
        stored_billing = storage.get_document("ws-1")["billing"]
        assert stored_billing["status"] == "inactive"
        assert stored_billing["updatedAt"] == now
        assert stored_billing["stripeCustomerId"] == "cus_1"
        assert event_types(audit_storage) == [
            AuditEventType.TRIAL_EXPIRED,
            AuditEventType.ACCESS_BLOCKED,
        ]

    def test_write_back_failure_keeps_decision(self, audit_logger, audit_storage, allowlist):
        """A failed expiry write is audited, not raised."""
        storage = FlakyWorkspaceStorage(failures=10, error=StorageError)
        billing = WorkspaceBilling(status=WorkspaceBillingStatus.TRIALING, trial_ends_at=T0)
        storage.put_workspace(make_workspace(billing=billing))
        flow = make_access_flow(storage, audit_logger, allowlist)

        decision = asyncio.run(flow.resolve_access("ws-1", ALICE, now=T0 + DAY_MS))

        assert decision.has_effective_access is False
        assert storage.attempts == 1
        assert event_types(audit_storage) == [
            AuditEventType.STORAGE_ERROR,
            AuditEventType.ACCESS_BLOCKED,
        ]
        assert storage.get_document("ws-1")["billing"]["status"] == "trialing"

    def test_missing_workspace(self, storage, audit_logger, allowlist):
        flow = make_access_flow(storage, audit_logger, allowlist)
        decision = asyncio.run(flow.resolve_access("nope", ALICE, now=T0))
        assert decision.has_effective_access is False
        assert decision.has_billing_access is False

    def test_bypass_mode_admin(self, storage, audit_logger, allowlist):
        storage.put_workspace(make_workspace(
            billing=WorkspaceBilling(status=WorkspaceBillingStatus.CANCELED)
        ))
        flow = make_access_flow(
            storage, audit_logger, allowlist,
            mode=ProductionAccessMode.WORKSPACE_INTERNAL_BYPASS,
        )
        decision = asyncio.run(flow.resolve_access("ws-1", ADMIN, now=T0))
        assert decision.reason == AccessReason.DEV_ADMIN

    def test_dev_billing_bypass_lets_admin_in(self, storage, audit_logger, audit_storage, allowlist):
        """With the bypass switched on, admins skip billing even in billing-only mode."""
        storage.put_workspace(make_workspace(
            billing=WorkspaceBilling(status=WorkspaceBillingStatus.CANCELED)
        ))
        flow = make_access_flow(storage, audit_logger, allowlist, billing_bypass_enabled=True)

        decision = asyncio.run(flow.resolve_access("ws-1", ADMIN, now=T0))

        assert decision.has_effective_access is True
        assert decision.has_billing_access is False
        assert decision.reason == AccessReason.DEV_ADMIN
        assert event_types(audit_storage) == [AuditEventType.ACCESS_GRANTED]

    def test_dev_billing_bypass_off_blocks_admin(self, storage, audit_logger, allowlist):
        storage.put_workspace(make_workspace(
            billing=WorkspaceBilling(status=WorkspaceBillingStatus.CANCELED)
        ))
        flow = make_access_flow(storage, audit_logger, allowlist, billing_bypass_enabled=False)

        decision = asyncio.run(flow.resolve_access("ws-1", ADMIN, now=T0))

        assert decision.has_effective_access is False
        assert decision.reason == AccessReason.BLOCKED

    def test_dev_billing_bypass_ignores_regular_users(self, storage, audit_logger, allowlist):
        storage.put_workspace(make_workspace(
            billing=WorkspaceBilling(status=WorkspaceBillingStatus.CANCELED)
        ))
        flow = make_access_flow(storage, audit_logger, allowlist, billing_bypass_enabled=True)

        decision = asyncio.run(flow.resolve_access("ws-1", ALICE, now=T0))

        assert decision.has_effective_access is False

    def test_expired_trial_without_stored_end_written_back(self, audit_logger, allowlist):
        """A trialing record with no trialEndsAt is expired from its creation date."""
        storage = InMemoryWorkspaceStorage()
        storage.put_workspace(make_workspace(
            billing=WorkspaceBilling(status=WorkspaceBillingStatus.TRIALING)
        ))
        flow = make_access_flow(storage, audit_logger, allowlist)

        decision = asyncio.run(flow.resolve_access("ws-1", ALICE, now=T0 + 30 * DAY_MS))

        assert decision.has_effective_access is False
        stored_billing = storage.get_document("ws-1")["billing"]
        assert stored_billing["status"] == "inactive"
        assert stored_billing["trialEndsAt"] == T0 + 7 * DAY_MS

    def test_works_without_audit_logger(self, storage, allowlist):
        flow = make_access_flow(storage, None, allowlist)
        decision = asyncio.run(flow.resolve_access("ws-1", ALICE, now=T0))
        assert decision.has_effective_access is True


# =============================================================================
# BEHAVIORAL ACTIONS
# =============================================================================

class TestRecordAction:
    """Tests for BehavioralActionFlow.record_action."""

    def test_action_persisted(self, storage, audit_logger, audit_storage, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist)

        outcome = asyncio.run(flow.record_action("ws-1", ALICE, action_at=T0, source="transaction"))

        assert outcome.applied is True
        assert outcome.metrics.consistency_index == 1
        stored = storage.get_document("ws-1")["behavioralMetrics"]
        assert stored["consistencyIndex"] == 1
        assert stored["maturityScore"] == 10
        assert stored["lastActionAt"] == {"alice": T0}
        assert event_types(audit_storage) == [AuditEventType.BEHAVIORAL_ACTION_APPLIED]

    def test_actions_accumulate(self, storage, audit_logger, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist)

        asyncio.run(flow.record_action("ws-1", ALICE, action_at=T0))
        asyncio.run(flow.record_action("ws-1", ALICE, action_at=T0 + DAY_MS))
        outcome = asyncio.run(flow.record_action("ws-1", BOB, action_at=T0 + DAY_MS))

        assert outcome.metrics.maturity_score == 30
        assert outcome.metrics.member_consistency_index == {"alice": 2, "bob": 1}
        assert outcome.metrics.shared_consistency_index == 100

    def test_rollout_off(self, storage, audit_logger, audit_storage, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist, BehavioralRolloutMode.OFF)

        outcome = asyncio.run(flow.record_action("ws-1", ADMIN, action_at=T0))

        assert outcome.applied is False
        assert outcome.ignored_reason == "rollout_disabled"
        assert "behavioralMetrics" not in storage.get_document("ws-1")
        assert event_types(audit_storage) == [AuditEventType.BEHAVIORAL_ACTION_IGNORED]

    def test_rollout_dev_admin_ignores_regular_users(self, storage, audit_logger, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist, BehavioralRolloutMode.DEV_ADMIN)

        outcome = asyncio.run(flow.record_action("ws-1", ALICE, action_at=T0))

        assert outcome.applied is False
        assert outcome.ignored_reason == "rollout_dev_only"

    def test_rollout_dev_admin_applies_for_admins(self, audit_logger, allowlist):
        storage = InMemoryWorkspaceStorage()
        storage.put_workspace(make_workspace(members=("admin-uid", "bob"), owner_id="admin-uid"))
        flow = make_behavioral_flow(storage, audit_logger, allowlist, BehavioralRolloutMode.DEV_ADMIN)

        outcome = asyncio.run(flow.record_action("ws-1", ADMIN, action_at=T0))

        assert outcome.applied is True

    def test_blank_workspace_id(self, storage, audit_logger, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist)
        with pytest.raises(ValueError):
            asyncio.run(flow.record_action("  ", ALICE, action_at=T0))

    def test_missing_workspace(self, storage, audit_logger, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist)
        with pytest.raises(NotFoundError):
            asyncio.run(flow.record_action("nope", ALICE, action_at=T0))

    def test_non_member(self, storage, audit_logger, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist)
        with pytest.raises(WorkspaceMembershipError) as exc_info:
            asyncio.run(flow.record_action("ws-1", ActingUser(uid="mallory"), action_at=T0))
        assert exc_info.value.uid == "mallory"
        assert "behavioralMetrics" not in storage.get_document("ws-1")


class TestRecordEntityChange:
    """Tests for BehavioralActionFlow.record_entity_change."""

    def test_change_audited_then_applied(self, storage, audit_logger, audit_storage, allowlist):
        flow = make_behavioral_flow(storage, audit_logger, allowlist)

        outcome = asyncio.run(flow.record_entity_change(
            "ws-1",
            ALICE,
            WorkspaceAuditAction.CREATE,
            "transactions",
            entity_id="tx-1",
            payload={"amount": 42.5},
            action_at=T0,
        ))

        assert outcome.applied is True
        assert event_types(audit_storage) == [
            AuditEventType.WORKSPACE_ENTITY_CHANGED,
            AuditEventType.BEHAVIORAL_ACTION_APPLIED,
        ]
        change, applied = audit_storage.events
        assert change.entity_id == "tx-1"
        assert change.details == {"action": "create", "payload": {"amount": 42.5}}
        assert applied.details["source"] == "transactions.create"

    def test_change_audited_when_rollout_off(self, storage, audit_logger, audit_storage, allowlist):
        """The audit trail does not depend on the city rollout."""
        flow = make_behavioral_flow(storage, audit_logger, allowlist, BehavioralRolloutMode.OFF)

        outcome = asyncio.run(flow.record_entity_change(
            "ws-1", ALICE, WorkspaceAuditAction.MARK_PAID, "bills", action_at=T0
        ))

        assert outcome.applied is False
        assert event_types(audit_storage) == [
            AuditEventType.WORKSPACE_ENTITY_CHANGED,
            AuditEventType.BEHAVIORAL_ACTION_IGNORED,
        ]


# =============================================================================
# RETRIES
# =============================================================================

class TestMergeWithRetry:
    """Tests for transient write failures."""

    def test_recovers_from_transient_failures(self):
        storage = FlakyWorkspaceStorage(failures=2)
        storage.put_workspace(make_workspace())

        result = asyncio.run(merge_with_retry(storage, "ws-1", {"name": "Nova"}, wait=wait_none()))

        assert result is True
        assert storage.attempts == 3
        assert storage.get_document("ws-1")["name"] == "Nova"

    def test_gives_up_after_three_attempts(self):
        storage = FlakyWorkspaceStorage(failures=3)
        storage.put_workspace(make_workspace())

        with pytest.raises(StorageConnectionError):
            asyncio.run(merge_with_retry(storage, "ws-1", {"name": "Nova"}, wait=wait_none()))
        assert storage.attempts == 3

    def test_other_storage_errors_not_retried(self):
        storage = FlakyWorkspaceStorage(failures=0)
        with pytest.raises(NotFoundError):
            asyncio.run(merge_with_retry(storage, "nope", {"name": "Nova"}, wait=wait_none()))
        assert storage.attempts == 1

    def test_record_action_retries(self, audit_logger, allowlist):
        storage = FlakyWorkspaceStorage(failures=1)
        storage.put_workspace(make_workspace())
        flow = make_behavioral_flow(storage, audit_logger, allowlist)

        outcome = asyncio.run(flow.record_action("ws-1", ALICE, action_at=T0))

        assert outcome.applied is True
        assert storage.get_document("ws-1")["behavioralMetrics"]["consistencyIndex"] == 1


# =============================================================================
# DAILY AGING
# =============================================================================

@pytest.fixture
def aging_storage():
    """Three workspaces: two with a city (one admin-owned), one without."""
    metrics = apply_behavioral_action(None, "alice", action_at=T0, members=["alice", "bob"])
    storage = InMemoryWorkspaceStorage()
    storage.put_workspace(make_workspace("ws-1", metrics=metrics))
    storage.put_workspace(make_workspace(
        "ws-2", members=("admin-uid",), owner_id="admin-uid",
        metrics=apply_behavioral_action(None, "admin-uid", action_at=T0, members=["admin-uid"]),
    ))
    storage.put_workspace(make_workspace("ws-3"))
    return storage


class TestRunDailyAging:
    """Tests for BehavioralActionFlow.run_daily_aging."""

    def test_ages_and_persists(self, aging_storage, audit_logger, audit_storage, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist)

        report = asyncio.run(flow.run_daily_aging(now=T0 + 3 * DAY_MS))

        assert report.processed == 3
        assert sorted(change.workspace_id for change in report.changed) == ["ws-1", "ws-2"]
        stored = aging_storage.get_document("ws-1")["behavioralMetrics"]
        assert stored["inactiveDays"] == 3
        assert stored["consistencyIndex"] == 0
        assert stored["cityEnergyState"] == "blackout_partial"
        assert "behavioralMetrics" not in aging_storage.get_document("ws-3")

        events = [e for e in audit_storage.events
                  if e.event_type == AuditEventType.BEHAVIORAL_AGING_APPLIED]
        assert len(events) == 2
        assert events[0].correlation_id == events[1].correlation_id

    def test_second_run_same_day_changes_nothing(self, aging_storage, audit_logger, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist)

        asyncio.run(flow.run_daily_aging(now=T0 + 3 * DAY_MS))
        report = asyncio.run(flow.run_daily_aging(now=T0 + 3 * DAY_MS))

        assert report.changed == []

    def test_dry_run_writes_nothing(self, aging_storage, audit_logger, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist)
        before = aging_storage.get_document("ws-1")

        report = asyncio.run(flow.run_daily_aging(dry_run=True, now=T0 + 3 * DAY_MS))

        assert report.dry_run is True
        assert len(report.changed) == 2
        assert report.changed[0].after["inactive_days"] == 3
        assert aging_storage.get_document("ws-1") == before

    def test_dev_admin_rollout_only_ages_admin_workspaces(self, aging_storage, audit_logger, allowlist):
        flow = make_behavioral_flow(
            aging_storage, audit_logger, allowlist, BehavioralRolloutMode.DEV_ADMIN
        )

        report = asyncio.run(flow.run_daily_aging(now=T0 + 3 * DAY_MS))

        assert report.processed == 1
        assert [change.workspace_id for change in report.changed] == ["ws-2"]

    def test_rollout_off_is_ignored(self, aging_storage, audit_logger, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist, BehavioralRolloutMode.OFF)

        report = asyncio.run(flow.run_daily_aging(now=T0 + 3 * DAY_MS))

        assert report.ignored is True
        assert report.ignored_reason == "rollout_disabled"
        assert report.processed == 0

    def test_single_workspace(self, aging_storage, audit_logger, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist)

        report = asyncio.run(flow.run_daily_aging(workspace_id="ws-2", now=T0 + 3 * DAY_MS))

        assert report.processed == 1
        assert report.changed[0].workspace_name == "Casa ws-2"

    def test_single_workspace_missing(self, aging_storage, audit_logger, audit_storage, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist)
        with pytest.raises(NotFoundError):
            asyncio.run(flow.run_daily_aging(workspace_id="nope", now=T0))
        assert event_types(audit_storage) == [AuditEventType.SYSTEM_ERROR]

    def test_failure_audited_and_raised(self, audit_logger, audit_storage, allowlist):
        """A failed write after retries is recorded as a system error."""
        storage = FlakyWorkspaceStorage(failures=10)
        storage.put_workspace(make_workspace(
            metrics=apply_behavioral_action(None, "alice", action_at=T0, members=["alice", "bob"])
        ))
        flow = make_behavioral_flow(storage, audit_logger, allowlist)

        with pytest.raises(StorageConnectionError):
            asyncio.run(flow.run_daily_aging(now=T0 + 3 * DAY_MS))

        error = audit_storage.events[-1]
        assert error.event_type == AuditEventType.SYSTEM_ERROR
        assert error.error_message == "backend unavailable"
        assert error.details == {"operation": "behavioral_daily_aging", "dry_run": False}

    def test_limit(self, aging_storage, audit_logger, allowlist):
        flow = make_behavioral_flow(aging_storage, audit_logger, allowlist, aging_batch_limit=2)

        assert asyncio.run(flow.run_daily_aging(now=T0 + DAY_MS)).processed == 2
        assert asyncio.run(flow.run_daily_aging(limit=1, now=T0 + DAY_MS)).processed == 1

    def test_clamp_batch_limit(self):
        assert clamp_batch_limit(0, 200) == 1
        assert clamp_batch_limit(5000, 200) == 1000
        assert clamp_batch_limit("50", 200) == 50
        assert clamp_batch_limit("lots", 200) == 200
        assert clamp_batch_limit(None, 200) == 200


# =============================================================================
# FACTORY
# =============================================================================

class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_builds_flows_sharing_storage(self, monkeypatch):
        monkeypatch.setenv("BEHAVIORAL_CITY_ROLLOUT", "all")
        monkeypatch.setenv("TRIAL_DAYS", "14")
        storage = InMemoryWorkspaceStorage()
        storage.put_workspace(make_workspace())

        access_flow, behavioral_flow, returned_storage = create_app_components(
            settings=Settings(), storage=storage
        )

        assert returned_storage is storage
        decision = asyncio.run(access_flow.resolve_access("ws-1", ALICE, now=T0 + 10 * DAY_MS))
        assert decision.has_effective_access is True
        outcome = asyncio.run(behavioral_flow.record_action("ws-1", ALICE, action_at=T0))
        assert outcome.applied is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
