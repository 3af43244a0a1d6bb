from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "EventPass"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "sqlite:///./eventpass.db"
    STORAGE_RETRIES: int = 2

    # Redis backs the idempotency cache and the scan rate limiter; both are off without it.
    REDIS_URL: Optional[str] = None
    IDEMPOTENCY_TTL_SECONDS: int = 300
    SCAN_RATE_LIMIT_PER_MINUTE: int = 60

    # Credentials embedded in QR codes
    CREDENTIAL_SIGNING_SECRET: str = "dev_credential_secret_change_me"

    # Login sessions
    SESSION_SECRET: str = "dev_session_secret_change_me"
    SESSION_ALGORITHM: str = "HS256"
    SESSION_TTL_MINUTES: int = 60 * 24 * 7

    # Optional admin account created at startup
    BOOTSTRAP_ADMIN_USERNAME: Optional[str] = None
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
