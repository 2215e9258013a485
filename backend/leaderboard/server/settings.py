"""Leaderboard server configuration via environment variables."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from leaderboard.scraper import DEFAULT_USER_AGENT
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class StorageBackend(StrEnum):
    LOCAL = "local"
    HTTP = "http"


class LeaderboardSettings(BaseSettings):
    model_config = {"env_prefix": "LEADERBOARD_"}

    source_url: str = "https://www.pokerstrategy.com/HSCGWP2025/"
    user_agent: str = DEFAULT_USER_AGENT
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)

    cache_ttl_seconds: float = Field(default=300.0, ge=0)
    cache_max_age_seconds: float = Field(default=3600.0, gt=0)
    history_cache_ttl_seconds: float = Field(default=300.0, ge=0)

    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_max_requests: int = Field(default=10, ge=1)

    storage_backend: StorageBackend = StorageBackend.LOCAL
    storage_dir: str = "backend/data/leaderboard"
    blob_api_url: str = ""
    blob_public_url: str = ""
    blob_token: str = ""

    log_dir: str | None = "backend/logs/leaderboard"
    cors_origins: list[str] = []

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    @model_validator(mode="after")
    def validate_http_storage(self) -> Self:
        if self.storage_backend == StorageBackend.HTTP:
            missing = [
                name for name in ("blob_api_url", "blob_public_url", "blob_token") if not getattr(self, name)
            ]
            if missing:
                raise ValueError(f"http storage backend requires {', '.join(missing)}")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
