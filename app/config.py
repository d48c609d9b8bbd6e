"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .retry import RetryPolicy


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AnimePicks", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    catalog_api_url: HttpUrl = Field(
        default="https://api.jikan.moe/v4", alias="CATALOG_API_URL"
    )
    catalog_page_size: int = Field(
        default=12, alias="CATALOG_PAGE_SIZE", ge=1, le=25
    )
    catalog_retry_attempts: int = Field(
        default=3, alias="CATALOG_RETRY_ATTEMPTS", ge=1, le=10
    )
    catalog_retry_delay: float = Field(
        default=1.0, alias="CATALOG_RETRY_DELAY", ge=0.0, le=30.0
    )
    show_only_japanese: bool = Field(default=True, alias="SHOW_ONLY_JAPANESE")

    recommendation_limit: int = Field(
        default=12, alias="RECOMMENDATION_LIMIT", ge=1, le=50
    )
    recommendation_more_limit: int = Field(
        default=6, alias="RECOMMENDATION_MORE_LIMIT", ge=1, le=50
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./animepicks.db", alias="DATABASE_URL"
    )
    local_state_path: Path | None = Field(default=None, alias="LOCAL_STATE_PATH")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("local_state_path", mode="before")
    @classmethod
    def _blank_path_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def catalog_retry_policy(self) -> RetryPolicy:
        """Return the retry policy applied to catalog requests."""

        return RetryPolicy(
            max_attempts=self.catalog_retry_attempts,
            base_delay=self.catalog_retry_delay,
        )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
