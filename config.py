"""
Configuration management for the crypto ledger.
Uses pydantic-settings for type-safe, centralized configuration.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'  # Allow extra fields in .env for flexibility
    )

    # Database
    database_url: str = "sqlite:///crypto_ledger.db"
    db_echo: bool = False

    # Currency conversion
    default_usd_vnd_rate: float = 25400.0  # Fallback when no P2P market rate is stored
    local_currency: str = "VND"
    rate_cache_ttl_seconds: int = 60

    # Price lookup
    price_cache_ttl_seconds: int = 60

    # Snapshot job
    snapshot_interval_minutes: int = 60
    snapshot_retention_days: int = 90
    refresh_market_rate: bool = True

    log_level: str = "INFO"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")

    @property
    def is_in_memory(self) -> bool:
        """Check if the configured database lives only in memory."""
        return self.is_sqlite and ":memory:" in self.database_url


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
