"""Service configuration, read from the environment (and ``.env``)."""

import logging
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATABASE_URL = "sqlite:///./examcore.db"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    ENV: Literal["dev", "staging", "prod", "test"] = "dev"
    PROJECT_NAME: str = "Exam Session Engine API"
    API_PREFIX: str = "/v1"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = DEFAULT_DATABASE_URL
    DATABASE_ECHO: bool = False

    # Comma-separated in the environment
    CORS_ORIGINS: str | list[str] = Field(default=["http://localhost:3000"])

    # Study sessions idle longer than this are abandoned instead of resumed
    RESUME_WINDOW_SECONDS: int = Field(default=24 * 60 * 60, gt=0)

    # Test session defaults when neither the request nor the exam sets them
    DEFAULT_TIME_LIMIT_SECONDS: int = Field(default=90 * 60, gt=0)
    DEFAULT_PASSING_SCORE: float = Field(default=70.0, ge=0, le=100)
    TIME_DRIFT_TOLERANCE_SECONDS: int = Field(default=30, ge=0)

    HISTORY_PAGE_SIZE: int = Field(default=20, gt=0)
    HISTORY_MAX_PAGE_SIZE: int = Field(default=100, gt=0)

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def known_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @model_validator(mode="after")
    def production_needs_database(self) -> "Settings":
        if self.ENV == "prod" and self.DATABASE_URL == DEFAULT_DATABASE_URL:
            raise ValueError("DATABASE_URL must be set in production")
        return self


settings = Settings()
