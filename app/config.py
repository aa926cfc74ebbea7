"""Application configuration models."""

from __future__ import annotations

import hashlib
import json
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Any, Iterable, Literal, Mapping

from pydantic import AliasChoices, BaseModel, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def parse_category_ids(value: object) -> tuple[int, ...]:
    """Return unique integer category ids from a comma list or iterable."""

    if value is None:
        return ()
    if isinstance(value, str):
        raw_values = [part.strip() for part in value.split(",")]
    elif isinstance(value, Iterable):
        raw_values = [str(part).strip() for part in value]
    else:
        raise ValueError("Category selections must be a string or iterable of ids")

    cleaned: list[int] = []
    for entry in raw_values:
        if not entry:
            continue
        try:
            category_id = int(entry)
        except ValueError as exc:
            raise ValueError("Category ids must be integers") from exc
        if category_id not in cleaned:
            cleaned.append(category_id)
    return tuple(cleaned)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Xtream Catalog Cache", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    xtream_base_url: str = Field(
        default="https://example.com", alias="XTREAM_BASE_URL"
    )
    xtream_username: str = Field(default="", alias="XTREAM_USERNAME")
    xtream_password: str = Field(default="", alias="XTREAM_PASSWORD")
    xtream_user_agent: str = Field(default="", alias="XTREAM_USER_AGENT")
    series_categories: Annotated[tuple[int, ...], NoDecode] = Field(
        default=(), alias="SERIES_CATEGORIES"
    )
    vod_categories: Annotated[tuple[int, ...], NoDecode] = Field(
        default=(), alias="VOD_CATEGORIES"
    )

    enable_caching: bool = Field(default=True, alias="ENABLE_CACHING")
    enable_vod_caching: bool = Field(default=True, alias="ENABLE_VOD_CACHING")
    refresh_interval_minutes: int = Field(
        default=60, alias="REFRESH_INTERVAL_MINUTES"
    )
    refresh_parallelism: int = Field(
        default=3, alias="REFRESH_PARALLELISM", ge=1, le=10
    )
    min_request_delay_ms: int = Field(
        default=100, alias="MIN_REQUEST_DELAY_MS", ge=0, le=1_000
    )
    cache_ttl_hours: int = Field(default=24, alias="CACHE_TTL_HOURS", ge=1)

    enable_retry: bool = Field(default=True, alias="ENABLE_RETRY")
    retry_max_attempts: int = Field(
        default=3, alias="RETRY_MAX_ATTEMPTS", ge=0, le=10
    )
    retry_initial_delay_ms: int = Field(
        default=1_000, alias="RETRY_INITIAL_DELAY_MS", ge=100, le=10_000
    )
    failure_cache_ttl_hours: int = Field(
        default=24, alias="FAILURE_CACHE_TTL_HOURS", ge=1, le=168
    )
    throw_on_persistent_failure: bool = Field(
        default=False, alias="THROW_ON_PERSISTENT_FAILURE"
    )

    enable_artwork: bool = Field(default=True, alias="ENABLE_ARTWORK")
    enable_vod_artwork: bool = Field(default=True, alias="ENABLE_VOD_ARTWORK")
    title_overrides: str = Field(default="", alias="TITLE_OVERRIDES")
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    scheduler_check_seconds: int = Field(
        default=600, alias="SCHEDULER_CHECK_SECONDS", ge=1
    )
    config_restart_grace_seconds: float = Field(
        default=5.0, alias="CONFIG_RESTART_GRACE_SECONDS", ge=0
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./xtreamcache.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("series_categories", "vod_categories", mode="before")
    @classmethod
    def _parse_categories(cls, value: object) -> tuple[int, ...]:
        """Normalise category selections from environment values."""

        return parse_category_ids(value)

    @field_validator("xtream_base_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    def cache_relevant_hash(self) -> str:
        """Return a fingerprint of the settings that shape cached series data.

        Refresh frequency, parallelism and retry tuning are left out so that
        changing them keeps the existing cache reachable.
        """

        return self._fingerprint(self.series_categories, self.enable_artwork)

    def vod_cache_relevant_hash(self) -> str:
        """Return the fingerprint of the settings that shape cached VOD data."""

        return self._fingerprint(self.vod_categories, self.enable_vod_artwork)

    def _fingerprint(self, categories: Iterable[int], artwork: bool) -> str:
        relevant = {
            "base_url": self.xtream_base_url,
            "username": self.xtream_username,
            "password": self.xtream_password,
            "categories": sorted(categories),
            "artwork": artwork,
            "overrides": self.title_overrides,
        }
        encoded = json.dumps(relevant, sort_keys=True).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()[:16]

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


class ConfigurationUpdate(BaseModel):
    """Partial settings update as submitted by the configuration page."""

    xtream_base_url: str | None = Field(
        default=None, validation_alias=AliasChoices("baseUrl", "BaseUrl")
    )
    xtream_username: str | None = Field(
        default=None, validation_alias=AliasChoices("username", "Username")
    )
    xtream_password: str | None = Field(
        default=None, validation_alias=AliasChoices("password", "Password")
    )
    xtream_user_agent: str | None = Field(
        default=None, validation_alias=AliasChoices("userAgent", "UserAgent")
    )
    series_categories: tuple[int, ...] | None = Field(
        default=None,
        validation_alias=AliasChoices("seriesCategories", "categories"),
    )
    vod_categories: tuple[int, ...] | None = Field(
        default=None, validation_alias=AliasChoices("vodCategories")
    )
    enable_caching: bool | None = Field(
        default=None, validation_alias=AliasChoices("enableCaching")
    )
    enable_vod_caching: bool | None = Field(
        default=None, validation_alias=AliasChoices("enableVodCaching")
    )
    refresh_interval_minutes: int | None = Field(
        default=None, validation_alias=AliasChoices("refreshIntervalMinutes")
    )
    refresh_parallelism: int | None = Field(
        default=None,
        ge=1,
        le=10,
        validation_alias=AliasChoices("refreshParallelism"),
    )
    min_request_delay_ms: int | None = Field(
        default=None,
        ge=0,
        le=1_000,
        validation_alias=AliasChoices("minRequestDelayMs"),
    )
    enable_retry: bool | None = Field(
        default=None, validation_alias=AliasChoices("enableRetry")
    )
    retry_max_attempts: int | None = Field(
        default=None,
        ge=0,
        le=10,
        validation_alias=AliasChoices("retryMaxAttempts"),
    )
    retry_initial_delay_ms: int | None = Field(
        default=None,
        ge=100,
        le=10_000,
        validation_alias=AliasChoices("retryInitialDelayMs"),
    )
    failure_cache_ttl_hours: int | None = Field(
        default=None,
        ge=1,
        le=168,
        validation_alias=AliasChoices("failureCacheTtlHours"),
    )
    throw_on_persistent_failure: bool | None = Field(
        default=None, validation_alias=AliasChoices("throwOnPersistentFailure")
    )
    enable_artwork: bool | None = Field(
        default=None, validation_alias=AliasChoices("enableArtwork")
    )
    enable_vod_artwork: bool | None = Field(
        default=None, validation_alias=AliasChoices("enableVodArtwork")
    )
    title_overrides: str | None = Field(
        default=None, validation_alias=AliasChoices("titleOverrides")
    )

    @field_validator("series_categories", "vod_categories", mode="before")
    @classmethod
    def _parse_categories(cls, value: object) -> object:
        if value is None:
            return None
        return parse_category_ids(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


@dataclass(slots=True)
class ConfigurationChange:
    """Result of applying an update to the configuration store."""

    previous: Settings
    settings: Settings

    @property
    def previous_hash(self) -> str:
        return self.previous.cache_relevant_hash()

    @property
    def current_hash(self) -> str:
        return self.settings.cache_relevant_hash()

    @property
    def cache_relevant(self) -> bool:
        return self.previous_hash != self.current_hash

    @property
    def vod_cache_relevant(self) -> bool:
        return (
            self.previous.vod_cache_relevant_hash()
            != self.settings.vod_cache_relevant_hash()
        )


class ConfigurationStore:
    """Holds the live settings and swaps them atomically on update."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._lock = threading.Lock()

    @property
    def current(self) -> Settings:
        return self._settings

    def cache_relevant_hash(self) -> str:
        return self._settings.cache_relevant_hash()

    def vod_cache_relevant_hash(self) -> str:
        return self._settings.vod_cache_relevant_hash()

    def update(self, changes: Mapping[str, Any]) -> ConfigurationChange:
        """Validate ``changes`` against the current settings and apply them."""

        with self._lock:
            previous = self._settings
            payload = previous.model_dump()
            payload.update(changes)
            updated = Settings.model_validate(payload)
            self._settings = updated
        return ConfigurationChange(previous=previous, settings=updated)


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
