"""Behavioral metrics ("financial city") package."""

from couple_ledger.behavioral.policy import DEFAULT_POLICY, BehavioralPolicy
from couple_ledger.behavioral.metrics import (
    apply_behavioral_action,
    apply_behavioral_aging,
    create_initial_behavioral_metrics,
    day_key,
    has_state_changed,
    inactivity_days,
    next_streak,
    normalize_behavioral_metrics,
    summarize_state,
    to_energy_state,
    to_maturity_role,
    to_shared_consistency_index,
    to_shared_consistency_state,
    to_structure_stage,
)

__all__ = [
    "DEFAULT_POLICY",
    "BehavioralPolicy",
    "apply_behavioral_action",
    "apply_behavioral_aging",
    "create_initial_behavioral_metrics",
    "day_key",
    "has_state_changed",
    "inactivity_days",
    "next_streak",
    "normalize_behavioral_metrics",
    "summarize_state",
    "to_energy_state",
    "to_maturity_role",
    "to_shared_consistency_index",
    "to_shared_consistency_state",
    "to_structure_stage",
]
