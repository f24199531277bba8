"""
Pydantic Settings Configuration
================================

All game configuration is loaded from environment variables.
Copy .env.example to .env and adjust as needed.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Main configuration settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================
    # PRICE FEED
    # ==========================================
    coingecko_api: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="CoinGecko API base URL (sole price source)"
    )
    price_cache_ttl_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How long a fetched price is served from cache"
    )
    price_fetch_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound on a single upstream price request"
    )

    # ==========================================
    # GAME
    # ==========================================
    settlement_delay_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Wait between prediction and settlement"
    )
    game_reward: int = Field(
        default=10,
        ge=0,
        description="Reward credited to the user on a clear win"
    )

    # ==========================================
    # SESSION CLEANUP
    # ==========================================
    session_max_age_seconds: float = Field(
        default=24 * 60 * 60,
        ge=0,
        description="Sessions older than this are removed by the cleanup sweep"
    )
    cleanup_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How often the cleanup sweep runs"
    )

    # ==========================================
    # LOGGING
    # ==========================================
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON logs instead of console output"
    )


# Global settings instance
settings = Settings()
