# raidplan/config.py
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ENV: str = "dev"
    APP_NAME: str = "Raid Plan Scheduler"

    # DB URL – SQLite locally, Postgres in deployments
    DATABASE_URL: str = "sqlite:///./raidplan.db"

    LOG_LEVEL: str = "INFO"

    # Availability windows longer than this are rejected
    AVAILABILITY_MAX_HOURS: int = 24

    # Report overlaps with every status; False narrows to committed/blocked
    REPORT_ALL_CONFLICT_STATUSES: bool = True

    HEATMAP_SLOT_MINUTES: int = 30

    MAX_RECURRENCE_INSTANCES: int = 52
    DEFAULT_TIMEZONE: str = "UTC"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

_settings: Optional[Settings] = None

def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
