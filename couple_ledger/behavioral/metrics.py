"""
Behavioral Metrics Engine

Maintains the "financial city" of a workspace: how consistently its members
log their finances.

- Every qualifying action (a transaction entry, a bill marked paid, ...)
  goes through `apply_behavioral_action`.
- Every read goes through `normalize_behavioral_metrics`, which recomputes
  the decay (inactive days, energy states) against "now". A city that nobody
  touches still goes dark, without any write.
- The daily job runs `apply_behavioral_aging`, which additionally erodes the
  consistency index by the days of inactivity accumulated since the last run.

All functions are pure. Persisting the result (a merge write of the whole
metrics document) and concurrency control belong to the caller. Concurrent
actions on one workspace are last-writer-wins; this is a gamification signal,
not a ledger.
"""

import math
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from couple_ledger.behavioral.policy import DEFAULT_POLICY, BehavioralPolicy
from couple_ledger.models.workspace import (
    DAY_MS,
    BehavioralEnergyState,
    BehavioralMaturityRole,
    BehavioralStructureStage,
    WorkspaceBehavioralMetrics,
    now_ms,
)


# Severity order used to compare energy states
ENERGY_SEVERITY = {
    BehavioralEnergyState.ENERGIZED: 0,
    BehavioralEnergyState.FLICKER: 1,
    BehavioralEnergyState.BLACKOUT_PARTIAL: 2,
    BehavioralEnergyState.ABANDONED: 3,
}


# =============================================================================
# RAW INPUT HANDLING
# =============================================================================

def _timestamp(value: Any) -> Optional[int]:
    """A positive finite epoch-ms timestamp, or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return int(value)


def _non_negative_int(value: Any, fallback: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return max(0, math.floor(value))


def _as_mapping(raw: Any) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return raw
    return {}


def _field(data: Mapping[str, Any], name: str, *legacy: str) -> Any:
    """Read a field stored either snake_case, camelCase or under a legacy key."""
    for key in (name, to_camel(name), *legacy):
        if key in data:
            return data[key]
    return None


def _timestamp_map(value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    result = {}
    for uid, raw_timestamp in value.items():
        timestamp = _timestamp(raw_timestamp)
        if uid and timestamp is not None:
            result[str(uid)] = timestamp
    return result


def _streak_map(value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    return {str(uid): _non_negative_int(streak) for uid, streak in value.items() if uid}


# =============================================================================
# DERIVATIONS
# =============================================================================

def day_key(timestamp: int, policy: BehavioralPolicy = DEFAULT_POLICY) -> int:
    """Calendar day number of a timestamp, at the policy's fixed UTC offset."""
    return (timestamp + policy.timezone_offset_minutes * 60_000) // DAY_MS


def inactivity_days(last_action_at: Optional[int], now: int) -> int:
    """Whole days elapsed since `last_action_at`. 0 when nothing happened yet."""
    if last_action_at is None:
        return 0
    return max(0, (now - last_action_at) // DAY_MS)


def to_energy_state(
    inactive_days: int,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> BehavioralEnergyState:
    if inactive_days >= policy.abandoned_after_days:
        return BehavioralEnergyState.ABANDONED
    if inactive_days >= policy.blackout_after_days:
        return BehavioralEnergyState.BLACKOUT_PARTIAL
    if inactive_days >= policy.flicker_after_days:
        return BehavioralEnergyState.FLICKER
    return BehavioralEnergyState.ENERGIZED


def to_maturity_role(
    maturity_score: int,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> BehavioralMaturityRole:
    if maturity_score >= policy.magnate_score:
        return BehavioralMaturityRole.MAGNATE
    if maturity_score >= policy.urban_manager_score:
        return BehavioralMaturityRole.URBAN_MANAGER
    if maturity_score >= policy.builder_score:
        return BehavioralMaturityRole.BUILDER
    return BehavioralMaturityRole.ARCHITECT


def to_structure_stage(
    maturity_score: int,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> BehavioralStructureStage:
    if maturity_score >= policy.consolidation_score:
        return BehavioralStructureStage.CONSOLIDATION
    if maturity_score >= policy.growth_score:
        return BehavioralStructureStage.GROWTH
    return BehavioralStructureStage.RESIDENCE


def is_recently_active(last_action_at: Optional[int], now: int) -> bool:
    """Rolling 24h window, used by both the action and the read path."""
    return last_action_at is not None and now - last_action_at < DAY_MS


def to_shared_consistency_index(active_members: int, total_members: int) -> int:
    """Percentage of active members, rounded half up. 100 with no members."""
    if total_members <= 0:
        return 100
    return math.floor(active_members * 100 / total_members + 0.5)


def to_shared_consistency_state(
    active_members: int,
    total_members: int,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> BehavioralEnergyState:
    if total_members <= 0:
        return BehavioralEnergyState.ENERGIZED

    inactive_members = total_members - active_members
    if inactive_members <= 0:
        return BehavioralEnergyState.ENERGIZED
    if inactive_members >= total_members:
        return BehavioralEnergyState.ABANDONED
    if inactive_members / total_members <= policy.shared_flicker_max_inactive_ratio:
        return BehavioralEnergyState.FLICKER
    return BehavioralEnergyState.BLACKOUT_PARTIAL


def next_streak(
    previous_action_at: Optional[int],
    previous_streak: int,
    action_at: int,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> int:
    """
    Day streak of one actor after an action at `action_at`.

    Same calendar day keeps the streak, the next calendar day extends it,
    any longer gap (or no history) starts over at 1.
    """
    if previous_action_at is None or previous_streak <= 0:
        return 1

    gap = day_key(action_at, policy) - day_key(previous_action_at, policy)
    if gap <= 0:
        return previous_streak
    if gap == 1:
        return previous_streak + 1
    return 1


# =============================================================================
# PUBLIC TRANSFORMS
# =============================================================================

def create_initial_behavioral_metrics(now: Optional[int] = None) -> WorkspaceBehavioralMetrics:
    now = now_ms() if now is None else now
    return WorkspaceBehavioralMetrics(updated_at=now)


def normalize_behavioral_metrics(
    raw: Any,
    members: Optional[Iterable[str]] = None,
    now: Optional[int] = None,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> WorkspaceBehavioralMetrics:
    """
    Read-time projection of stored metrics.

    Stored counters are sanitized (non-negative integers, valid timestamps)
    and every derived field is recomputed against `now` instead of being
    trusted from storage.

    Args:
        raw: Stored metrics (model, camelCase document or None)
        members: Current member uids of the workspace
        now: Evaluation time (epoch ms), read once when omitted
    """
    now = now_ms() if now is None else now
    data = _as_mapping(raw)
    member_list = [member for member in (members or []) if member]

    last_action_at = _timestamp_map(
        _field(data, "last_action_at", "memberLastActionAt")
    )
    member_streaks = _streak_map(_field(data, "member_consistency_index"))
    consistency_index = _non_negative_int(_field(data, "consistency_index"))
    maturity_score = _non_negative_int(_field(data, "maturity_score"))

    latest_action = max(last_action_at.values(), default=None)
    inactive_days = inactivity_days(latest_action, now)

    member_energy_state = {}
    for member in member_list:
        member_last_action = last_action_at.get(member)
        if member_last_action is None:
            member_energy_state[member] = BehavioralEnergyState.ABANDONED
        else:
            member_energy_state[member] = to_energy_state(
                inactivity_days(member_last_action, now), policy
            )

    active_members = sum(
        1 for member in member_list if is_recently_active(last_action_at.get(member), now)
    )

    return WorkspaceBehavioralMetrics(
        consistency_index=consistency_index,
        shared_consistency_index=to_shared_consistency_index(active_members, len(member_list)),
        maturity_score=maturity_score,
        maturity_role=to_maturity_role(maturity_score, policy),
        structure_stage=to_structure_stage(maturity_score, policy),
        city_energy_state=to_energy_state(inactive_days, policy),
        shared_consistency_state=to_shared_consistency_state(
            active_members, len(member_list), policy
        ),
        inactive_days=inactive_days,
        last_action_at=last_action_at,
        member_consistency_index=member_streaks,
        member_energy_state=member_energy_state,
        updated_at=_timestamp(_field(data, "updated_at")) or now,
    )


def apply_behavioral_action(
    current: Any,
    actor_uid: str,
    action_at: Optional[int] = None,
    members: Optional[Iterable[str]] = None,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> WorkspaceBehavioralMetrics:
    """
    Apply one qualifying action of `actor_uid` at `action_at`.

    - Records the actor's latest action
    - Updates the actor's day streak; `consistency_index` reports it
    - Adds the fixed maturity increment (the score never decreases)
    - Recomputes every derived field at `action_at`

    `current` may be None: the city is created on the first action.
    """
    action_at = _timestamp(action_at) or now_ms()
    members = [member for member in (members or []) if member]
    state = normalize_behavioral_metrics(current, members=members, now=action_at, policy=policy)

    streak = next_streak(
        state.last_action_at.get(actor_uid),
        state.member_consistency_index.get(actor_uid, 0),
        action_at,
        policy,
    )

    updated = state.model_copy(update={
        "consistency_index": streak,
        "maturity_score": state.maturity_score + policy.maturity_increment,
        "last_action_at": {**state.last_action_at, actor_uid: action_at},
        "member_consistency_index": {**state.member_consistency_index, actor_uid: streak},
        "updated_at": action_at,
    })
    return normalize_behavioral_metrics(updated, members=members, now=action_at, policy=policy)


def apply_behavioral_aging(
    current: Any,
    members: Optional[Iterable[str]] = None,
    now: Optional[int] = None,
    policy: BehavioralPolicy = DEFAULT_POLICY,
) -> WorkspaceBehavioralMetrics:
    """
    Daily decay pass.

    The consistency index loses one point per day of inactivity accumulated
    since the stored `inactive_days`, so running the job twice in a day
    changes nothing the second time. Per-actor streaks broken by a gap of
    more than one calendar day are reset to 0.
    """
    now = now_ms() if now is None else now
    previous_inactive_days = _non_negative_int(_field(_as_mapping(current), "inactive_days"))
    state = normalize_behavioral_metrics(current, members=members, now=now, policy=policy)

    aging_delta = max(0, state.inactive_days - previous_inactive_days)
    today = day_key(now, policy)
    member_streaks = {
        uid: (
            streak
            if uid in state.last_action_at
            and today - day_key(state.last_action_at[uid], policy) <= 1
            else 0
        )
        for uid, streak in state.member_consistency_index.items()
    }

    return state.model_copy(update={
        "consistency_index": max(0, state.consistency_index - aging_delta),
        "member_consistency_index": member_streaks,
        "updated_at": now,
    })


def summarize_state(metrics: Optional[WorkspaceBehavioralMetrics]) -> dict[str, Any]:
    """The fields operators look at when a city changes."""
    if metrics is None:
        metrics = WorkspaceBehavioralMetrics()
    return {
        "consistency_index": metrics.consistency_index,
        "inactive_days": metrics.inactive_days,
        "city_energy_state": metrics.city_energy_state.value,
        "shared_consistency_state": metrics.shared_consistency_state.value,
        "shared_consistency_index": metrics.shared_consistency_index,
    }


def has_state_changed(
    before: WorkspaceBehavioralMetrics,
    after: WorkspaceBehavioralMetrics,
) -> bool:
    return summarize_state(before) != summarize_state(after)
