"""Typed key layout for catalog data kept in the versioned cache."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from ..models import ArtworkRecord, Category, Episode, Movie, Season, Series, SeriesInfo
from .cache_store import VersionedCacheStore


class CatalogCache:
    """Reads and writes catalog entities under the store's current namespace.

    A view returned by :meth:`pinned` is bound to the namespace that was
    current when it was created and keeps using it after the configuration
    changes or the cache is invalidated.
    """

    def __init__(
        self,
        store: VersionedCacheStore,
        ttl: timedelta = timedelta(hours=24),
        *,
        prefix: str | None = None,
    ):
        self._store = store
        self._prefix = prefix
        self.ttl = ttl

    @property
    def store(self) -> VersionedCacheStore:
        return self._store

    @property
    def prefix(self) -> str:
        return self._prefix or self._store.current_prefix()

    def pinned(self) -> CatalogCache:
        return CatalogCache(self._store, self.ttl, prefix=self._store.current_prefix())

    def _set(self, key: str, value: Any) -> None:
        self._store.set(key, value, self.ttl, prefix=self._prefix)

    def _get(self, key: str) -> Any:
        return self._store.get(key, prefix=self._prefix)

    def set_categories(self, categories: list[Category]) -> None:
        self._set("categories", list(categories))

    def get_categories(self) -> list[Category] | None:
        return self._get("categories")

    def set_series_list(self, category_id: int, series: list[Series]) -> None:
        self._set(f"series_{category_id}", list(series))

    def get_series_list(self, category_id: int) -> list[Series] | None:
        return self._get(f"series_{category_id}")

    def set_series_info(self, series_id: int, info: SeriesInfo) -> None:
        self._set(f"seriesinfo_{series_id}", info)

    def get_series_info(self, series_id: int) -> SeriesInfo | None:
        return self._get(f"seriesinfo_{series_id}")

    def set_season(self, series_id: int, season_number: int, season: Season | None) -> None:
        self._set(f"season_{series_id}_{season_number}", season)

    def get_season(self, series_id: int, season_number: int) -> Season | None:
        return self._get(f"season_{series_id}_{season_number}")

    def set_episodes(
        self, series_id: int, season_number: int, episodes: list[Episode]
    ) -> None:
        self._set(f"episodes_{series_id}_{season_number}", list(episodes))

    def get_episodes(self, series_id: int, season_number: int) -> list[Episode] | None:
        return self._get(f"episodes_{series_id}_{season_number}")

    def set_movies(self, category_id: int, movies: list[Movie]) -> None:
        self._set(f"movies_{category_id}", list(movies))

    def get_movies(self, category_id: int) -> list[Movie] | None:
        return self._get(f"movies_{category_id}")

    def set_artwork(self, record: ArtworkRecord) -> None:
        self._set(f"artwork_{record.entity_id}", record)
        if record.external_id:
            self._set(f"tmdb_id_{record.entity_id}", record.external_id)

    def get_artwork(self, entity_id: int) -> ArtworkRecord | None:
        return self._get(f"artwork_{entity_id}")

    def get_external_id(self, entity_id: int) -> str | None:
        return self._get(f"tmdb_id_{entity_id}")

    def is_populated(self) -> bool:
        return self._store.contains("categories", prefix=self._prefix)
