"""
Configuration settings for the order sync engine.
Loads from environment variables with validation.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Order Sync Engine"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Tenant header fallback (auth middleware lives upstream of this service)
    DEFAULT_TENANT_ID: str = "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./ordersync.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Credential encryption (Fernet). Required when DEBUG is off.
    # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    CREDENTIALS_ENCRYPTION_KEY: str | None = None

    # Platform APIs
    SHOPIFY_API_VERSION: str = "2024-01"
    HTTP_TIMEOUT_SECONDS: float = 30.0
    SYNC_MAX_PAGES: int = 20

    # Sync coordinator
    SCHEDULER_ENABLED: bool = True
    SYNC_LOCK_BACKEND: str = "local"  # 'local' or 'redis'
    SYNC_LOCK_TTL_SECONDS: int = 900
    DEFAULT_SYNC_LOOKBACK_HOURS: int = 24
    TEST_CONNECTION_LOOKBACK_DAYS: int = 7

    def validate_production_settings(self):
        """Validate critical settings for production deployment."""
        if not self.DEBUG and not self.CREDENTIALS_ENCRYPTION_KEY:
            raise ValueError(
                "CREDENTIALS_ENCRYPTION_KEY is required in production. "
                "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )
        if self.SYNC_LOCK_BACKEND not in ("local", "redis"):
            raise ValueError("SYNC_LOCK_BACKEND must be 'local' or 'redis'")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader with production validation."""
    settings = Settings()
    settings.validate_production_settings()
    return settings
