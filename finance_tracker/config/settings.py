"""
Configuration Management for Finance Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The cache policy (staleness window, idle GC window, retry count) lives here
as plain parameters so tests can shrink or freeze them.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Query cache policy."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        extra="ignore"
    )

    stale_time_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Age after which a cached result is considered stale"
    )
    gc_time_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="How long an unobserved entry is kept before eviction"
    )
    retry: int = Field(
        default=1,
        ge=0,
        le=10,
        description="Automatic retries for a failed read"
    )
    retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay before retrying a failed read"
    )

    # Refetch triggers
    refetch_on_mount: bool = Field(
        default=True,
        description="Refetch a stale entry when an observer subscribes"
    )
    refetch_on_window_focus: bool = Field(
        default=True,
        description="Refetch observed stale entries on focus/visibility"
    )
    refetch_on_reconnect: bool = Field(
        default=True,
        description="Refetch observed stale entries when the network returns"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per collection
    transactions_sheet_name: str = Field(
        default="transactions",
        description="Name of the sheet holding transactions"
    )
    categories_sheet_name: str = Field(
        default="categories",
        description="Name of the sheet holding categories"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v

    def sheet_name_for(self, collection: str) -> str:
        """Map a collection name to its worksheet."""
        if collection == "transactions":
            return self.transactions_sheet_name
        if collection == "categories":
            return self.categories_sheet_name
        raise ValueError(f"Unknown collection: {collection}")


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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )

    # Validation thresholds
    max_transaction_amount: float = Field(
        default=10_000_000.0,
        gt=0,
        description="Amount above which a transaction is flagged for review"
    )
    future_date_tolerance_days: int = Field(
        default=31,
        ge=0,
        description="How many days in the future a transaction may be dated"
    )

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def cache(self) -> CacheSettings:
        return CacheSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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


def validate_all_settings() -> dict[str, bool | str]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus an
    ``<name>_error`` entry for every section that failed.
    Useful for startup checks.
    """
    results: dict[str, bool | str] = {}

    settings = get_settings()

    sections = {
        "cache": lambda: settings.cache,
        "google_sheets": lambda: settings.google_sheets,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            load()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
