"""
Configuration Management for the Finance Sync Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Sweep intervals, reminder timing and classifier limits live next to the
remote store credentials so every tunable of a session is visible in one place.
"""

from datetime import time
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets remote store configuration."""

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
    incomes_sheet_name: str = Field(default="Incomes")
    expenses_sheet_name: str = Field(default="Expenses")
    clients_sheet_name: str = Field(default="Clients")
    invoices_sheet_name: str = Field(default="Invoices")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before starting a session."
            )
        return v

    def sheet_name_for(self, collection: str) -> str:
        """Worksheet name backing a collection."""
        return getattr(self, f"{collection}_sheet_name")


class EngineSettings(BaseSettings):
    """
    Timing and sizing knobs of the derived-state engine.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    overdue_sweep_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="How often pending invoices are checked for overdue"
    )
    reminder_sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How often due reminders are fired"
    )
    reminder_lead_days: int = Field(
        default=3,
        ge=0,
        description="Days before the due date an invoice reminder is placed"
    )
    reminder_time: time = Field(
        default=time(9, 0),
        description="Time of day invoice reminders fire"
    )
    recent_transactions_limit: int = Field(
        default=5,
        ge=1,
        description="Number of transactions in the dashboard recent list"
    )
    max_keywords_per_category: int = Field(
        default=30,
        ge=1,
        description="Upper bound for learned classifier vocabulary"
    )
    learn_tokens_per_call: int = Field(
        default=3,
        ge=1,
        description="Keywords a single learn() call may add"
    )
    backup_version: str = Field(default="1.0.0")
    backup_history_size: int = Field(default=10, ge=1)
    calendar_product_id: str = Field(
        default="-//FinanceAI//Calendario//PT",
        description="PRODID written in iCalendar exports"
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

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    store_backend: str = Field(
        default="memory",
        description="Remote store implementation: 'memory' or 'google_sheets'"
    )

    @field_validator('store_backend')
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        allowed = {"memory", "google_sheets"}
        if v not in allowed:
            raise ValueError(f"Unsupported store backend: {v}. Allowed: {allowed}")
        return v


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

    # Loaded lazily so a memory-backed session needs no Sheets credentials

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()

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


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "engine", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
