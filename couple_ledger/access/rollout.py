"""
Behavioral Rollout Gate

Tri-state feature flag for the behavioral city:
- off: nobody
- dev_admin: developer-admins only (default)
- all: everyone
"""

from typing import Any

from couple_ledger.models.workspace import BehavioralRolloutMode


def normalize_behavioral_rollout_mode(value: Any) -> BehavioralRolloutMode:
    """Read a configured mode. Anything unrecognised means dev_admin."""
    if isinstance(value, BehavioralRolloutMode):
        return value
    normalized = str(value or "").strip().lower()
    if normalized == BehavioralRolloutMode.ALL.value:
        return BehavioralRolloutMode.ALL
    if normalized == BehavioralRolloutMode.OFF.value:
        return BehavioralRolloutMode.OFF
    return BehavioralRolloutMode.DEV_ADMIN


def has_behavioral_rollout_access(mode: Any, is_developer_admin: bool) -> bool:
    mode = normalize_behavioral_rollout_mode(mode)
    if mode == BehavioralRolloutMode.OFF:
        return False
    if mode == BehavioralRolloutMode.ALL:
        return True
    if mode == BehavioralRolloutMode.DEV_ADMIN:
        return bool(is_developer_admin)
    raise ValueError(f"Unhandled rollout mode: {mode!r}")
