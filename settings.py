"""
Application settings

Values are read from the environment (or a local .env file) through
pydantic-settings. Use get_settings() instead of instantiating Settings
directly so the parsed values are shared.
"""
import logging
from functools import lru_cache
from typing import Annotated, List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET_KEY = "dev-secret-change-me-before-deploying"


class Settings(BaseSettings):
    # App
    APP_TITLE: str = "Attendance Dashboard API"
    APP_VERSION: str = "1.0.0"
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Database (MongoDB)
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "attendance"
    DATABASE_TIMEOUT_MS: int = 5000

    # Auth
    JWT_SECRET_KEY: str = DEFAULT_JWT_SECRET_KEY
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 600
    ADMIN_EMAILS: Annotated[List[str], NoDecode] = []

    # Analytics
    RANKING_LIMIT: int = 5

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("CORS_ORIGINS", "ADMIN_EMAILS", mode="before")
    @classmethod
    def _split_csv(cls, v):
        # "a,b , c" -> ["a", "b", "c"]
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def warn_insecure_defaults(settings: Settings) -> bool:
    """Log a warning when tokens are signed with the built-in development key."""
    if settings.JWT_SECRET_KEY == DEFAULT_JWT_SECRET_KEY:
        logger.warning("JWT_SECRET_KEY is not set; tokens are signed with the development default")
        return True
    return False
