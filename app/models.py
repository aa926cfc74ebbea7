"""Pydantic models describing Xtream catalog payloads."""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

logger = logging.getLogger(__name__)

LEADING_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, (list, dict)) and not value:
        return None
    return value


def _lenient_number(value: Any) -> float | None:
    """Read a number from loose panel values such as ``"45 min"`` or ``"7.5"``.

    Anything without a leading number becomes ``None``.
    """

    value = _blank_to_none(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        match = LEADING_NUMBER_RE.match(value)
        if match:
            return float(match.group(1))
    return None


def _lenient_int(value: Any) -> int | None:
    number = _lenient_number(value)
    return None if number is None else int(number)


class XtreamModel(BaseModel):
    """Base model tolerant to the loose typing of Xtream responses."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @classmethod
    def empty(cls) -> "XtreamModel":
        """Return the placeholder used when a payload cannot be obtained."""

        return cls.model_validate({})


class Category(XtreamModel):
    category_id: int = 0
    category_name: str = ""
    parent_id: int | None = None

    @field_validator("parent_id", mode="before")
    @classmethod
    def _clean_parent(cls, value: Any) -> Any:
        return _lenient_int(value)


class Series(XtreamModel):
    """A series entry as listed inside a category."""

    series_id: int = 0
    name: str = ""
    cover: str | None = None
    plot: str | None = None
    genre: str | None = None
    release_date: str | None = Field(
        default=None, validation_alias=AliasChoices("releaseDate", "release_date")
    )
    rating: float | None = None
    category_id: int | None = None
    last_modified: int | None = None

    @field_validator("cover", "plot", "genre", "release_date", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("rating", mode="before")
    @classmethod
    def _clean_rating(cls, value: Any) -> Any:
        return _lenient_number(value)

    @field_validator("category_id", "last_modified", mode="before")
    @classmethod
    def _clean_numbers(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class SeriesDetails(Series):
    """The ``info`` block of a series info response."""

    cast: str | None = None
    director: str | None = None
    episode_run_time: int | None = None

    @field_validator("cast", "director", mode="before")
    @classmethod
    def _clean_details(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("episode_run_time", mode="before")
    @classmethod
    def _clean_run_time(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("series_id", mode="before")
    @classmethod
    def _clean_series_id(cls, value: Any) -> Any:
        return _lenient_int(value) or 0


class Season(XtreamModel):
    season_number: int = 0
    name: str = ""
    episode_count: int | None = None
    overview: str | None = None
    air_date: str | None = None
    cover: str | None = None

    @field_validator("overview", "air_date", "cover", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("episode_count", mode="before")
    @classmethod
    def _clean_count(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class Episode(XtreamModel):
    id: int = 0
    episode_num: int = 0
    title: str = ""
    container_extension: str | None = None
    season: int | None = None
    added: int | None = None
    info: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "episode_num", mode="before")
    @classmethod
    def _clean_required_numbers(cls, value: Any) -> Any:
        return _lenient_int(value) or 0

    @field_validator("season", "added", mode="before")
    @classmethod
    def _clean_numbers(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("container_extension", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("info", mode="before")
    @classmethod
    def _coerce_info(cls, value: Any) -> Any:
        # Xtream panels send ``[]`` instead of ``{}`` when there is no info.
        return value if isinstance(value, dict) else {}

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> Any:
        return "" if value is None else str(value)


def _valid_entries(entries: Any, model: type[XtreamModel], context: str) -> list[Any]:
    """Validate list entries one by one, dropping the ones that do not fit."""

    valid = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            valid.append(model.model_validate(entry))
        except ValidationError as exc:
            logger.debug("Dropping malformed %s entry: %s", context, exc)
    return valid


class SeriesInfo(XtreamModel):
    """Seasons and episodes of a single series."""

    info: SeriesDetails = Field(default_factory=SeriesDetails)
    seasons: list[Season] = Field(default_factory=list)
    episodes: dict[int, list[Episode]] = Field(default_factory=dict)

    @field_validator("info", mode="before")
    @classmethod
    def _coerce_details(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        try:
            return SeriesDetails.model_validate(value)
        except ValidationError as exc:
            logger.debug("Dropping malformed series details: %s", exc)
            return {}

    @field_validator("seasons", mode="before")
    @classmethod
    def _coerce_seasons(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return _valid_entries(value, Season, "season")

    @field_validator("episodes", mode="before")
    @classmethod
    def _coerce_episodes(cls, value: Any) -> Any:
        if isinstance(value, list):
            # Some panels return a list of per-season lists instead of a mapping.
            grouped: dict[Any, list[Any]] = {}
            for chunk in value:
                if not isinstance(chunk, list):
                    continue
                for entry in chunk:
                    if isinstance(entry, dict):
                        grouped.setdefault(entry.get("season", 0), []).append(entry)
            value = grouped
        if not isinstance(value, dict):
            return {}
        episodes: dict[int, list[Episode]] = {}
        for key, entries in value.items():
            season_number = _lenient_int(key)
            if season_number is None or not isinstance(entries, list):
                continue
            episodes.setdefault(season_number, []).extend(
                _valid_entries(entries, Episode, "episode")
            )
        return episodes

    def season_numbers(self) -> list[int]:
        """Return every season number mentioned by the seasons or episodes."""

        numbers = {season.season_number for season in self.seasons}
        numbers.update(self.episodes.keys())
        return sorted(numbers)

    def season(self, season_number: int) -> Season | None:
        for season in self.seasons:
            if season.season_number == season_number:
                return season
        return None

    def episodes_for(self, season_number: int) -> list[Episode]:
        return list(self.episodes.get(season_number, []))

    def episode_count(self) -> int:
        return sum(len(entries) for entries in self.episodes.values())

    def is_empty(self) -> bool:
        return not (self.seasons or self.episodes)


class Movie(XtreamModel):
    """A VOD stream as listed inside a category."""

    stream_id: int = 0
    name: str = ""
    stream_icon: str | None = None
    category_id: int | None = None
    rating: float | None = None
    added: int | None = None
    container_extension: str | None = None

    @field_validator("stream_icon", "container_extension", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("rating", mode="before")
    @classmethod
    def _clean_rating(cls, value: Any) -> Any:
        return _lenient_number(value)

    @field_validator("category_id", "added", mode="before")
    @classmethod
    def _clean_numbers(cls, value: Any) -> Any:
        return _lenient_int(value)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class ArtworkRecord(BaseModel):
    """Artwork resolved for a catalog entity."""

    entity_id: int
    image_url: str
    external_id: str | None = None
    source: str = "search"
    search_term: str | None = None
