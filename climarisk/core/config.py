"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development and tests.

Usage:
    from climarisk.core.config import settings
    print(settings.GRID_RESOLUTION_DEG)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "ClimaRisk Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── External APIs ──
    OPEN_METEO_BASE_URL: str = "https://api.open-meteo.com/v1"
    OBSERVATION_FETCH_TIMEOUT: float = 3.0  # seconds per sample point

    # ── Spatial grid ──
    GRID_RESOLUTION_DEG: float = 0.5
    GRID_SAMPLE_POINTS: int = 1  # real samples fetched per region
    RANDOM_SEED: int = 42

    # ── Alert thresholds ──
    FORMATION_PROBABILITY_THRESHOLD: float = 0.4
    TIME_TO_FORMATION_THRESHOLD_HOURS: float = 72.0
    WIND_SPEED_THRESHOLD_KT: float = 100.0  # Category 3+
    NEARBY_DISTANCE_KM: float = 500.0

    # ── Alert lifecycle ──
    ALERT_ACTIVE_WINDOW_HOURS: float = 24.0
    ALERT_RETENTION_DAYS: float = 7.0
    ALERT_DEDUP_BUCKET_MINUTES: int = 60

    # ── Notification channels ──
    ALERT_EMAIL: Optional[str] = None
    ALERT_PHONE: Optional[str] = None
    ALERT_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT: float = 5.0  # seconds per send attempt
    NOTIFICATION_MAX_RETRIES: int = 2

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
