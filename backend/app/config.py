"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Business Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./automation.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    ENGINE_DISPATCH_MODE: str = "auto"  # auto, celery, inline

    # Workflow engine defaults
    STEP_DEFAULT_TIMEOUT_SECONDS: float = 30.0
    STEP_DEFAULT_RETRY_DELAY_SECONDS: float = 30.0
    STEP_MAX_RETRY_DELAY_SECONDS: float = 300.0
    DELAY_STEP_MAX_SECONDS: float = 86400.0
    # Dry runs (test_workflow) still dispatch steps unless this is turned off
    DRY_RUN_DISPATCHES_STEPS: bool = True

    # Email (SMTP)
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM_ADDRESS: str = "automation@localhost"

    # Outbound webhooks
    WEBHOOK_TIMEOUT_SECONDS: float = 15.0
    WEBHOOK_SIGNING_SECRET: str = ""
    WEBHOOK_ALLOW_PRIVATE_HOSTS: bool = False
    # Subscribers that receive every ingested business event (JSON list)
    EVENT_WEBHOOK_URLS: list[str] = []

    # Claude AI Settings
    ANTHROPIC_API_KEY: str = ""
    CLAUDE_MODEL: str = "claude-sonnet-4-5-20250929"
    CLAUDE_MAX_TOKENS: int = 2048
    CLAUDE_TEMPERATURE: float = 0.2
    CLAUDE_TIMEOUT: int = 120
    CLAUDE_SYSTEM_PROMPT: str = (
        "You are a financial and business analysis assistant embedded in a "
        "workflow automation engine. Answer precisely and keep the output "
        "structured so later workflow steps can use it."
    )

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

    def validate_secrets(self) -> None:
        """Refuse to run production without a webhook signing secret.

        Raises:
            RuntimeError: If production environment has an empty WEBHOOK_SIGNING_SECRET
        """
        if self.is_production and not self.WEBHOOK_SIGNING_SECRET:
            raise RuntimeError(
                "CRITICAL: WEBHOOK_SIGNING_SECRET environment variable must be set in production."
            )

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
