"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Cronflow"
    APP_VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./cronflow.db"
    SQLALCHEMY_ECHO: bool = False

    # Scheduler Settings
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"

    # Execution Settings
    ACTION_TIMEOUT_SECONDS: float = 30.0
    SCRIPT_TIMEOUT_SECONDS: float = 10.0
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    WORKFLOW_MAX_STEP_VISITS: int = 1000
    WEBHOOK_BASE_PATH: str = "/api/webhooks"

    # SMTP Settings (email notification channel)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = "noreply@cronflow.local"
    SMTP_USE_TLS: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Settings are read from the environment once and cached.
    """
    return Settings()
