"""
Configuration Management for Couple Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The pure resolvers never read configuration themselves: the flows read it
once and pass allowlists, modes and policies in explicitly.
"""

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from couple_ledger.access.policy import normalize_access_mode
from couple_ledger.access.rollout import normalize_behavioral_rollout_mode
from couple_ledger.behavioral.policy import BehavioralPolicy
from couple_ledger.models.access import AdminAllowlist
from couple_ledger.models.workspace import (
    BehavioralRolloutMode,
    ProductionAccessMode,
)


class AccessSettings(BaseSettings):
    """Developer-admin allowlist and access mode configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DEV_ADMIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    emails: str = Field(
        default="",
        description="Comma-separated developer-admin emails"
    )
    uids: str = Field(
        default="",
        description="Comma-separated developer-admin uids"
    )
    billing_bypass_enabled: bool = Field(
        default=False,
        validation_alias="ENABLE_DEV_BILLING_BYPASS",
        description="Let developer-admins use the app without billing"
    )
    access_mode: ProductionAccessMode = Field(
        default=ProductionAccessMode.BILLING_ONLY,
        validation_alias="PRODUCTION_ACCESS_MODE",
        description="How access is decided when billing does not grant it"
    )

    @field_validator('access_mode', mode='before')
    @classmethod
    def unknown_mode_is_billing_only(cls, v: Any) -> Any:
        """Anything unrecognised falls back to billing-only access."""
        return normalize_access_mode(v)

    @property
    def allowlist(self) -> AdminAllowlist:
        return AdminAllowlist.from_csv(emails=self.emails, uids=self.uids)


class BehavioralSettings(BaseSettings):
    """Behavioral city rollout and scoring configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BEHAVIORAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    city_rollout: str = Field(
        default="dev_admin",
        description="Rollout mode: off, dev_admin or all"
    )
    timezone_offset_minutes: int = Field(
        default=-180,
        ge=-720,
        le=840,
        description="Fixed UTC offset used to split calendar days for streaks"
    )
    maturity_increment: int = Field(
        default=10,
        ge=1,
        description="Maturity points earned per action"
    )

    @property
    def rollout_mode(self) -> BehavioralRolloutMode:
        return normalize_behavioral_rollout_mode(self.city_rollout)

    def policy(self) -> BehavioralPolicy:
        return BehavioralPolicy(
            timezone_offset_minutes=self.timezone_offset_minutes,
            maturity_increment=self.maturity_increment,
        )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Billing
    trial_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Length of the free trial of a new workspace"
    )

    # Behavioral aging job
    aging_batch_limit: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="Default number of workspaces processed per aging run"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def access(self) -> AccessSettings:
        return AccessSettings()

    @property
    def behavioral(self) -> BehavioralSettings:
        return BehavioralSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, Any]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error` entries
    for the failures. An empty developer-admin allowlist is reported as a
    warning since admin checks then fail closed.
    """
    results: dict[str, Any] = {}

    settings = get_settings()

    for name in ("access", "behavioral", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    if results.get("access") and not settings.access.allowlist.is_configured:
        results["access_warning"] = "DEV_ADMIN_EMAILS/DEV_ADMIN_UIDS not configured"

    return results
