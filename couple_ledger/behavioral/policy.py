"""
Behavioral Scoring Policy

Every threshold used by the behavioral metrics engine lives here.
The engine itself contains no magic numbers.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BehavioralPolicy(BaseModel):
    """Thresholds and increments of the financial city."""
    model_config = ConfigDict(frozen=True)

    # Calendar day boundaries for streaks (fixed offset, in minutes from UTC)
    timezone_offset_minutes: int = Field(default=-180, ge=-720, le=840)

    # Points added to the maturity score by every action
    maturity_increment: int = Field(default=10, ge=1)

    # City energy by whole days of inactivity
    flicker_after_days: int = Field(default=1, ge=1)
    blackout_after_days: int = Field(default=2, ge=1)
    abandoned_after_days: int = Field(default=5, ge=1)

    # Shared consistency state by fraction of inactive members
    # (0 -> energized, up to this -> flicker, below 1 -> blackout_partial, 1 -> abandoned)
    shared_flicker_max_inactive_ratio: float = Field(default=0.5, gt=0.0, lt=1.0)

    # Maturity roles
    builder_score: int = 300
    urban_manager_score: int = 1500
    magnate_score: int = 5000

    # Structure stages
    growth_score: int = 900
    consolidation_score: int = 3650

    @model_validator(mode='after')
    def validate_ascending(self) -> 'BehavioralPolicy':
        """Tiers must not overlap."""
        if not self.flicker_after_days < self.blackout_after_days < self.abandoned_after_days:
            raise ValueError("Energy thresholds must be strictly ascending")
        if not 0 < self.builder_score < self.urban_manager_score < self.magnate_score:
            raise ValueError("Role thresholds must be strictly ascending")
        if not 0 < self.growth_score < self.consolidation_score:
            raise ValueError("Stage thresholds must be strictly ascending")
        return self


DEFAULT_POLICY = BehavioralPolicy()
