"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Workflow Orchestration Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflow.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker for the beat-driven supervisor)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Engine Settings
    DISPATCH_MAX_CONCURRENCY: int = 5
    CONFLICT_RETRY_ATTEMPTS: int = 3
    DEFAULT_MAX_RETRY_ATTEMPTS: int = 3
    SEED_SYSTEM_WORKFLOWS: bool = True

    # Supervisor Settings
    SUPERVISOR_ENABLED: bool = True
    SUPERVISOR_INTERVAL_SECONDS: float = 60.0

    # Collaborating services
    IDENTITY_SERVICE_URL: str = "http://auth-service:8080/auth"
    NOTIFICATION_SERVICE_URL: str = "http://notification-service:8080/notification"
    # Maps the first path segment of a step's service endpoint to a base URL,
    # e.g. {"auth-service": "http://auth-service:8080/auth"}
    SERVICE_BASE_URLS: dict[str, str] = {}
    HTTP_TIMEOUT_SECONDS: float = 30.0

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

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
