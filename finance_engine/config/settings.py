"""
Configuration Management for the Finance Engine

Every section is a pydantic-settings class read from the environment and .env.

DESIGN DECISION: All configuration is centralized here.
Thresholds that decide when alerts fire live next to the storage
credentials, so every tunable number is visible in one place and
validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Thresholds and defaults used by the scheduler, evaluator and tracker."""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_ENGINE_",
        extra="ignore"
    )

    default_alert_threshold: int = Field(
        default=80,
        ge=1,
        le=100,
        description="Budget usage percentage that triggers an alert"
    )

    # Goal attention rules
    attention_lag_points: float = Field(
        default=20.0,
        ge=0.0,
        le=100.0,
        description="How many percentage points behind schedule a goal may fall"
    )
    attention_progress_floor: float = Field(
        default=50.0,
        ge=0.0,
        le=100.0,
        description="Progress below which urgent goals near their deadline are flagged"
    )
    attention_deadline_days: int = Field(
        default=30,
        ge=0,
        description="Days before deadline at which urgent goals are checked"
    )

    recurring_tag: str = Field(
        default="recurring",
        min_length=1,
        description="Tag added to ledger entries created from obligations"
    )
    upcoming_window_days: int = Field(
        default=30,
        ge=1,
        le=366,
        description="Default look-ahead window for upcoming obligations"
    )
    claim_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Age after which an unfinished processing claim may be taken over"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration (ledger and audit log)."""

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

    # Sheet names within the spreadsheet
    ledger_sheet_name: str = Field(
        default="Ledger",
        description="Name of the sheet holding ledger entries"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn, without failing, when the credentials file is absent."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the engine."
            )
        return v


class AppSettings(BaseSettings):
    """
    Process-level options: environment name, debug flag and log level.
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
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for structured logs"
    )


class Settings(BaseSettings):
    """
    Entry point for every configuration section.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are built on access so that a missing Sheets
    # configuration does not prevent the in-memory engine from starting.

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide Settings instance.

    Tests call get_settings.cache_clear() after changing the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Build every section once and report which of them failed.

    Returns a dict of {setting_name: is_valid} plus an
    ``<name>_error`` entry for every section that failed.
    """
    results = {}
    settings = get_settings()

    sections = {
        "engine": lambda: settings.engine,
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
