"""Configuration settings for the scheduling engine."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Application
    APP_NAME: str = "Event Horizon"
    LOG_LEVEL: str = "INFO"
    SEED_DEMO_DATA: bool = False

    # Recurrence expansion
    MAX_EXPANSION_PERIODS: int = 366
    WINDOW_LOOKAHEAD_MONTHS: int = 2
    CONFLICT_HORIZON_YEARS: int = 1

    # Assistant
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
