"""
Configuration Management for Home Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirebaseSettings(BaseSettings):
    """Firebase / Firestore backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIREBASE_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Firebase service account credentials JSON"
    )
    project_id: Optional[str] = Field(
        default=None,
        description="Google Cloud project ID (defaults to the one in the credentials)"
    )
    database_id: str = Field(
        default="(default)",
        description="Firestore database ID"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firebase credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class RecurringSettings(BaseSettings):
    """Recurring transaction processing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RECURRING_",
        extra="ignore"
    )

    max_occurrences_per_run: int = Field(
        default=1,
        ge=1,
        le=120,
        description="How many due occurrences of one template a single run may materialize"
    )
    max_conflict_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="How often to re-scan after a concurrent run advanced a template first"
    )
    max_batch_writes: int = Field(
        default=450,
        ge=1,
        le=500,
        description="Write budget of one recurring commit (Firestore allows 500); templates are never split"
    )
    scheduler_interval_seconds: int = Field(
        default=3600,
        ge=10,
        description="Seconds between scheduler sweeps over all households"
    )
    system_user_id: str = Field(
        default="system:recurring",
        min_length=1,
        description="User ID recorded on transactions generated by the scheduler"
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

    # Ledger defaults
    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency used when a household has none configured"
    )
    transactions_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="How many recent transactions list views load"
    )

    # Validation thresholds
    max_transaction_amount: float = Field(
        default=10000000.0,
        description="Maximum reasonable transaction amount (for sanity checking)"
    )
    future_date_tolerance_days: int = Field(
        default=366,
        description="How many days in the future a transaction date can be"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def firebase(self) -> FirebaseSettings:
        return FirebaseSettings()

    @property
    def recurring(self) -> RecurringSettings:
        return RecurringSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("firebase", "recurring", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
