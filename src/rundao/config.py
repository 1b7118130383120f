"""Application settings via pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables with RUNDAO_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="RUNDAO_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Core ---
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    database_url: str = "sqlite+aiosqlite:///./rundao.db"
    create_schema_on_startup: bool = True
    redis_url: str = ""
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    log_level: str = "INFO"
    log_format: str = "json"

    # --- JWT ---
    jwt_secret: str = "rundao-dev-secret-change-me"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24
    jwt_issuer: str = "rundao"

    # --- Quests / settlement ---
    supported_stake_tokens: list[str] = ["USDC", "USDT", "ETH"]
    default_success_rate_bps: int = 8000
    default_dao_rate_bps: int = 1000
    default_protocol_fee_rate_bps: int = 1000
    protocol_fee_cap_bps: int = 2000
    default_max_slots: int = 20
    dao_treasury_address: str = ""
    protocol_fee_recipient: str = ""

    # --- Crews ---
    default_crew_max_members: int = 50


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
