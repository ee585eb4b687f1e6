"""
Configuration Management for Envelope Budget

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every policy the engine has to choose (what happens when an account with
transactions is deleted, whether negative opening balances are allowed,
which store backend to use) is a named, validated setting.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Transactional store configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="BUDGET_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    backend: str = Field(
        default="memory",
        pattern="^(memory|sqlite)$",
        description="Store implementation to use"
    )
    sqlite_path: str = Field(
        default="envelope_budget.db",
        description="Path of the SQLite database file (':memory:' for a private in-memory database)"
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=60.0,
        description="How long SQLite waits on a locked database before failing"
    )
    
    # Retry policy for opening connections and units of work
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts before a store is reported unavailable"
    )
    retry_wait_min: float = Field(
        default=0.2,
        ge=0.0,
        description="Minimum wait between attempts (seconds)"
    )
    retry_wait_max: float = Field(
        default=2.0,
        ge=0.0,
        description="Maximum wait between attempts (seconds)"
    )


class LedgerSettings(BaseSettings):
    """
    Business policy settings for the ledger components.
    """
    
    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    account_delete_policy: str = Field(
        default="reject",
        pattern="^(reject|cascade)$",
        description="Deleting an account with transactions: reject, or cascade-delete them"
    )
    allow_negative_initial_balance: bool = Field(
        default=False,
        description="Accept negative opening balances (recorded as an expense)"
    )
    initial_balance_category: str = Field(
        default="Initial Balance",
        min_length=1,
        max_length=100,
        description="Name of the reserved category holding opening-balance transactions"
    )
    seed_default_categories: bool = Field(
        default=True,
        description="Create the default category set for users who have none"
    )
    
    # Transaction listing
    default_page_size: int = Field(
        default=50,
        ge=1,
        description="Page size used when the caller does not give one"
    )
    max_page_size: int = Field(
        default=500,
        ge=1,
        le=10000,
        description="Largest page size a caller may request"
    )
    
    @field_validator('default_page_size')
    @classmethod
    def validate_default_page_size(cls, v: int) -> int:
        """Keep the default page size within the hard ceiling."""
        if v > 10000:
            raise ValueError("default_page_size cannot exceed 10000")
        return v


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="BUDGET_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum log level"
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON (False gives console output)"
    )
    
    @field_validator('level', mode='before')
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


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
    
    # Sub-settings are loaded on access so one broken section
    # does not prevent reading the others
    
    @property
    def store(self) -> StoreSettings:
        return StoreSettings()
    
    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()
    
    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


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
    
    for name in ("store", "ledger", "logging"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
    
    return results
