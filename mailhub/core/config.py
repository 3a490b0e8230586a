"""
Application configuration management using Pydantic Settings
Handles all environment variables and email pipeline settings
"""

from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    """Main application settings"""

    # Application Settings
    APP_NAME: str = "MailHub"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./mailhub.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_ECHO: bool = False

    # Email Delivery
    EMAIL_BACKEND: str = "brevo"  # brevo, smtp
    FROM_EMAIL: Optional[str] = None
    FROM_NAME: str = "MailHub"
    BREVO_API_KEY: Optional[str] = None
    BREVO_API_URL: str = "https://api.brevo.com/v3/smtp/email"
    SMTP_HOST: str = "smtp-relay.brevo.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = False
    SMTP_START_TLS: bool = True

    # Email Queue
    EMAIL_QUEUE_MAX_ATTEMPTS: int = 3
    EMAIL_QUEUE_RETRY_DELAY_SECONDS: int = 5 * 60
    EMAIL_QUEUE_BATCH_SIZE: int = 10
    EMAIL_QUEUE_PROCESSING_INTERVAL_SECONDS: int = 30
    EMAIL_QUEUE_DELIVERY_TIMEOUT_SECONDS: int = 30
    EMAIL_QUEUE_CLAIM_TTL_SECONDS: int = 5 * 60
    EMAIL_QUEUE_AUTOSTART: bool = False

    # Retention (days)
    EMAIL_RETENTION_DAYS: int = 30
    EMAIL_TRACKING_RETENTION_DAYS: int = 90

    # Celery Configuration
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"
    CELERY_TIMEZONE: str = "UTC"

    # Monitoring
    PROMETHEUS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def database_url_async(self) -> str:
        """Convert sync database URL to async"""
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://")
        return self.DATABASE_URL

@lru_cache()
def get_settings() -> Settings:
    """
    Create cached settings instance
    This ensures settings are loaded only once
    """
    return Settings()

# Global settings instance
settings = get_settings()
