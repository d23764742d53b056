from functools import lru_cache
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MSG_CHAR_LIMIT = 160
DEFAULT_MSG_PER_TICK = 2
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 30


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # Pydantic v2 settings config
    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./messages.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Outbound webhook
    WEBHOOK_URL: str = ""
    WEBHOOK_AUTH_KEY: str = ""
    WEBHOOK_TIMEOUT_SECONDS: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS
    # Remote delivery ids equal to this value are replaced with a local UUID.
    # Empty string disables the check.
    DELIVERY_ID_PLACEHOLDER: str = "{{uuid}}"

    # Dispatch scheduling
    # Non-positive values fall back to 120s when the scheduler starts
    SCHEDULE_SECONDS: float = 120
    MSG_CHAR_LIMIT: int = DEFAULT_MSG_CHAR_LIMIT
    MSG_PER_TICK: int = DEFAULT_MSG_PER_TICK
    SCHEDULER_AUTOSTART: bool = False

    @field_validator("MSG_CHAR_LIMIT")
    @classmethod
    def default_char_limit(cls, v: int) -> int:
        return v if v > 0 else DEFAULT_MSG_CHAR_LIMIT

    @field_validator("MSG_PER_TICK")
    @classmethod
    def default_per_tick(cls, v: int) -> int:
        return v if v > 0 else DEFAULT_MSG_PER_TICK

    @field_validator("WEBHOOK_TIMEOUT_SECONDS")
    @classmethod
    def default_webhook_timeout(cls, v: float) -> float:
        return v if v > 0 else DEFAULT_WEBHOOK_TIMEOUT_SECONDS


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
