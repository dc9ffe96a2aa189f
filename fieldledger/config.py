"""
FieldLedger - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "FieldLedger"
    app_env: str = "development"
    debug: bool = True
    api_version: str = "v1"

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str  # Required - must be set in .env
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ===========================================
    # JWT AUTHENTICATION
    # Tokens are issued by the identity service; this API only verifies them.
    # ===========================================
    jwt_secret_key: str  # Required - must be set in .env
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # ===========================================
    # BANK RECONCILIATION
    # ===========================================
    # Maximum |difference| allowed when completing a reconciliation
    reconciliation_tolerance: Decimal = Decimal("0.01")

    # Auto-match scoring (score is 0-100)
    auto_match_high_threshold: Decimal = Decimal("85")
    auto_match_medium_threshold: Decimal = Decimal("65")
    auto_match_date_points_per_day: Decimal = Decimal("5")
    # Uncleared postings dated up to this many days after the statement
    # end date are still offered as candidates
    auto_match_grace_days: int = 0

    # Bank statement line import
    statement_import_chunk_size: int = 100

    # ===========================================
    # CORS SETTINGS
    # ===========================================
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env.lower() == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url_async.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Export settings instance
settings = get_settings()
