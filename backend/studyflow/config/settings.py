"""
Application Configuration

This module provides type-safe configuration loading using Pydantic settings.
Environment variables are loaded from .env file and validated.

Learning constants (mastery threshold, scoring values, focus-session limits)
are settings too, so a deployment can tune them without code changes.
Infrastructure tuning that rarely changes per environment (pool sizes, Redis
key names) lives in config/default.yaml.

Usage:
    from studyflow.config import settings

    # Access settings
    db_url = settings.POSTGRES_URL
    required = settings.MASTERY_REVIEWS_REQUIRED
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "StudyFlow"
    DEBUG: bool = False

    # PostgreSQL
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "studyflow"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "studyflow"

    @property
    def POSTGRES_URL(self) -> str:
        """Async PostgreSQL connection URL."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    EVENT_RELAY_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Spaced repetition
    MASTERY_REVIEWS_REQUIRED: int = 5
    PERFECT_WINDOW_HOURS: float = 0.5
    UPCOMING_DAYS_DEFAULT: int = 7

    # Review scoring
    REVIEW_BASE_POINTS: int = 10
    COMBO_TIMEOUT_MINUTES: float = 5.0
    MASTERY_BONUS_POINTS: int = 100

    # Levels: cost of level n is floor(BASE * GROWTH ** (n - 1))
    LEVEL_EXPERIENCE_BASE: int = 100
    LEVEL_EXPERIENCE_GROWTH: float = 1.2

    # Focus sessions
    FOCUS_POINTS_PER_WORK_MINUTE: int = 2
    FOCUS_DEFAULT_GOAL_MINUTES: int = 60
    FOCUS_MAX_GOAL_MINUTES: int = 480
    FOCUS_GOAL_MULTIPLIER: float = 1.5
    FOCUS_MAX_SESSION_HOURS: float = 8.0
    FOCUS_STALE_SEGMENT_HOURS: float = 2.0
    FOCUS_STALE_WORK_CAP_MINUTES: int = 120
    FOCUS_STALE_BREAK_CAP_MINUTES: int = 30
    FOCUS_QUICK_END_CAP_MINUTES: int = 120
    FOCUS_MIN_RECOVERABLE_WORK_MINUTES: float = 1.0
    FOCUS_TICK_SECONDS: float = 1.0
    FOCUS_RECONCILE_EVERY_TICKS: int = 15
    FOCUS_SYNC_EVERY_TICKS: int = 30
    FOCUS_SYNC_MAX_RETRIES: int = 3
    FOCUS_STATS_DAYS_DEFAULT: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()


@lru_cache()
def load_yaml_config() -> dict[str, Any]:
    """Load infrastructure configuration from config/default.yaml."""
    config_path = Path(__file__).parent.parent.parent.parent / "config" / "default.yaml"

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


yaml_config: dict[str, Any] = load_yaml_config()
