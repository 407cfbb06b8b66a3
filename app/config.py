"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ITEM_LIMIT = 50
DEFAULT_REFRESH_INTERVAL_HOURS = 24


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Shufflist", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=7000, alias="PORT")

    trakt_client_id: str | None = Field(default=None, alias="TRAKT_CLIENT_ID")
    trakt_api_url: HttpUrl = Field(
        default="https://api.trakt.tv", alias="TRAKT_API_URL"
    )

    mdblist_api_key: str | None = Field(default=None, alias="MDBLIST_API_KEY")
    mdblist_api_url: HttpUrl = Field(
        default="https://api.mdblist.com", alias="MDBLIST_API_URL"
    )

    plex_url: HttpUrl | None = Field(default=None, alias="PLEX_URL")
    plex_token: str | None = Field(default=None, alias="PLEX_TOKEN")

    imdb_top_movies_url: HttpUrl = Field(
        default="https://www.imdb.com/chart/top/", alias="IMDB_TOP_MOVIES_URL"
    )
    imdb_top_series_url: HttpUrl = Field(
        default="https://www.imdb.com/chart/toptv/", alias="IMDB_TOP_SERIES_URL"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./shufflist.db", alias="DATABASE_URL"
    )

    default_refresh_interval_hours: int = Field(
        default=DEFAULT_REFRESH_INTERVAL_HOURS,
        alias="DEFAULT_REFRESH_INTERVAL_HOURS",
        ge=0,
    )
    default_item_limit: int = Field(
        default=DEFAULT_ITEM_LIMIT, alias="DEFAULT_ITEM_LIMIT", ge=1, le=1_000
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "trakt_client_id", "mdblist_api_key", "plex_url", "plex_token", mode="before"
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
