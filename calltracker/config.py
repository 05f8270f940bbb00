from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./calls.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # API Security - required, checked against the X-API-Key header
    API_SECRET_KEY: str

    # Call ledger rules
    MAX_CALL_DURATION_SECONDS: int = 3600
    STALE_CALL_AFTER_MINUTES: int = 60
    STALE_CALL_WINDOW_MINUTES: int = 120

    # Retry policy for transient store failures
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
