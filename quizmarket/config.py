"""
QuizMarket Attempt Service
Application configuration and settings management
"""

import os
import secrets
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Settings
    APP_NAME: str = "QuizMarket Attempt Service"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Security Settings
    SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    PASSWORD_MIN_LENGTH: int = 8

    # CORS Settings (comma-separated list of allowed hosts)
    ALLOWED_HOSTS: str = "*"

    @property
    def allowed_hosts(self) -> List[str]:
        return [host.strip() for host in self.ALLOWED_HOSTS.split(",") if host.strip()]

    # Database Configuration
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "quizmarket"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "password"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False

    @property
    def database_url(self) -> str:
        """Generate database URL from components or use provided URL"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # For development, use SQLite
        if self.ENVIRONMENT == "development":
            return "sqlite+aiosqlite:///./quizmarket.db"

        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis Configuration (rate limiting and abuse tracking)
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Quiz Attempt Configuration
    ATTEMPT_SUBMIT_GRACE_SECONDS: int = 5
    ATTEMPTS_PER_PAGE: int = 15
    MAX_ATTEMPTS_PER_PAGE: int = 100
    RECENT_ATTEMPTS_LIMIT: int = 10

    # Quiz Rankings
    RANKING_PASS_SCORE: float = 60.0
    RANKING_DEFAULT_LIMIT: int = 50
    RANKING_MAX_LIMIT: int = 100

    # Quiz Attempt Security
    QUIZ_ATTEMPT_RATE_LIMIT: int = 30
    QUIZ_ATTEMPT_RATE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_EXEMPT_PATHS: str = "enrollment-status,results"
    RAPID_SUBMISSION_THRESHOLD: int = 3
    RAPID_SUBMISSION_WINDOW_SECONDS: int = 60
    RAPID_SUBMISSION_HISTORY_CAP: int = 20
    RAPID_SUBMISSION_TTL_SECONDS: int = 300
    MIN_SECONDS_PER_QUESTION: float = 5.0
    MAX_CONCURRENT_ATTEMPTS: int = 2

    @property
    def rate_limit_exempt_paths(self) -> List[str]:
        return [marker.strip() for marker in self.RATE_LIMIT_EXEMPT_PATHS.split(",") if marker.strip()]

    # Monitoring and Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ENABLE_REQUEST_LOGGING: bool = True

    # Seed data
    SEED_DEMO_DATA: bool = False


class DevelopmentSettings(Settings):
    """Development environment specific settings"""
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    SEED_DEMO_DATA: bool = True


class ProductionSettings(Settings):
    """Production environment specific settings"""
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    DB_ECHO: bool = False
    ENABLE_REQUEST_LOGGING: bool = False

    # Require these in production
    SECRET_KEY: str
    JWT_SECRET_KEY: str
    DATABASE_URL: str


class TestingSettings(Settings):
    """Testing environment specific settings"""
    DEBUG: bool = True
    ENVIRONMENT: str = "testing"
    DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"
    ENABLE_REQUEST_LOGGING: bool = False
    JWT_SECRET_KEY: str = "testing-secret-key-for-the-attempt-suite"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 5


@lru_cache()
def get_settings() -> Settings:
    """Get application settings with caching"""
    environment = os.getenv("ENVIRONMENT", "development").lower()

    if environment == "production":
        return ProductionSettings()
    elif environment == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


def get_database_url() -> str:
    """Get the database URL for the current environment"""
    return get_settings().database_url


def get_redis_url() -> str:
    """Get the Redis URL for the current environment"""
    settings = get_settings()
    if settings.REDIS_URL:
        return settings.REDIS_URL
    if settings.REDIS_PASSWORD:
        return f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
    return f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"


# Export commonly used settings
__all__ = [
    "Settings",
    "DevelopmentSettings",
    "ProductionSettings",
    "TestingSettings",
    "get_settings",
    "get_database_url",
    "get_redis_url"
]
