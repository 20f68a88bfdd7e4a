"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Note: get_settings() is cached, so tests that need different values
    must set the environment before the first import or clear the cache.
    """

    # Database settings
    DATABASE_URL: str = "postgresql://localhost/tenantcore_dev"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Token signing
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"

    # Sessions
    # "redis" for multi-process deployments, "memory" for a single worker / tests
    SESSION_BACKEND: str = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_IDLE_TIMEOUT_MINUTES: int = 30
    SESSION_MAX_AGE_HOURS: int = 24
    SESSION_COOKIE_NAME: str = "tenantcore_session"
    SESSION_COOKIE_SECURE: bool = False
    SESSION_LOCK_TIMEOUT_SECONDS: int = 10

    # Audit log querying
    AUDIT_LOG_DEFAULT_LIMIT: int = 100
    AUDIT_LOG_MAX_LIMIT: int = 500

    # Tenants
    DEFAULT_TENANT_PLAN: str = "free"

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures we only instantiate settings once.
    """
    return Settings()
