"""
Configuration settings for the QTrack persistence layer.

Uses Pydantic Settings to load environment variables for the embedded database
location, schema identity, connection behaviour and logging.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_path: str = Field("qtrack.db", alias="QTRACK_DB_PATH")
    db_name: str = Field("QTrackDB", alias="QTRACK_DB_NAME")
    db_version: int = Field(1, alias="QTRACK_DB_VERSION", ge=1)

    # Connection behaviour
    max_retries: int = Field(3, alias="QTRACK_MAX_RETRIES", ge=1)
    timeout_seconds: float = Field(5.0, alias="QTRACK_TIMEOUT_SECONDS", gt=0)

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
