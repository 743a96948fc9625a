"""Application settings loaded from the environment (or a local .env file)."""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./learning_engine.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"

    # Quiz defaults
    default_pass_threshold: int = 70

    # Risk policy: completion bands
    risk_low_completion_percent: int = 35
    risk_low_completion_weight: int = 35
    risk_partial_completion_percent: int = 55
    risk_partial_completion_weight: int = 20

    # Risk policy: inactivity bands
    risk_stale_days: int = 30
    risk_stale_weight: int = 45
    risk_idle_days: int = 14
    risk_idle_weight: int = 30
    risk_no_activity_weight: int = 30

    # Risk policy: assignments
    risk_overdue_weight: int = 15
    risk_overdue_cap: int = 30
    risk_low_score_weight: int = 10
    risk_low_score_cap: int = 20
    risk_untouched_overdue_bonus: int = 10

    # Risk policy: levels
    risk_high_threshold: int = 70
    risk_medium_threshold: int = 45

    model_config = SettingsConfigDict(
        env_prefix="LEARNING_ENGINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    settings = Settings()
    logger.debug("Loaded settings for database %s", settings.database_url)
    return settings
