"""Mirror cached catalog entries into the SQL catalog tables."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import Base
from ..db_models import MovieRecord, SeriesRecord
from .catalog_cache import CatalogCache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PopulateResult:
    upserted: int = 0
    removed: int = 0


class TablePopulator:
    """Upserts one row per cached entry and deletes rows no longer cached.

    Runs are serialised, so a populate requested while another is writing
    waits for it and then sees the rows it committed.
    """

    record_type: type[Base]
    key_column: str
    label = "catalog"

    def __init__(
        self,
        catalog_cache: CatalogCache,
        session_factory: async_sessionmaker[AsyncSession],
        fingerprint: Callable[[], str],
    ):
        self._cache = catalog_cache
        self._session_factory = session_factory
        self._fingerprint = fingerprint
        self._lock = asyncio.Lock()

    async def populate(self) -> PopulateResult:
        async with self._lock:
            try:
                result = await self._populate()
            except Exception:
                logger.exception("Populating the %s table failed", self.label)
                return PopulateResult()
        logger.info(
            "%s table populated: %s upserted, %s removed",
            self.label.capitalize(),
            result.upserted,
            result.removed,
        )
        return result

    def _collect(self) -> dict[int, dict[str, Any]]:
        raise NotImplementedError

    async def _populate(self) -> PopulateResult:
        rows = self._collect()
        result = PopulateResult()
        key = getattr(self.record_type, self.key_column)
        async with self._session_factory() as session:
            existing = {
                getattr(record, self.key_column): record
                for record in (await session.execute(select(self.record_type))).scalars()
            }
            for entry_id, values in rows.items():
                record = existing.get(entry_id)
                if record is None:
                    session.add(self.record_type(**{self.key_column: entry_id}, **values))
                else:
                    for name, value in values.items():
                        setattr(record, name, value)
                result.upserted += 1

            stale = [entry_id for entry_id in existing if entry_id not in rows]
            if stale:
                await session.execute(delete(self.record_type).where(key.in_(stale)))
                result.removed = len(stale)
            await session.commit()
        return result


class CatalogPopulator(TablePopulator):
    """Writes one ``SeriesRecord`` per cached series and drops the rest."""

    record_type = SeriesRecord
    key_column = "series_id"
    label = "series"

    def _collect(self) -> dict[int, dict[str, Any]]:
        rows: dict[int, dict[str, Any]] = {}
        fingerprint = self._fingerprint()
        now = datetime.now(timezone.utc)
        for category in self._cache.get_categories() or []:
            for series in self._cache.get_series_list(category.category_id) or []:
                if series.series_id in rows:
                    continue
                artwork = self._cache.get_artwork(series.series_id)
                info = self._cache.get_series_info(series.series_id)
                rows[series.series_id] = {
                    "category_id": series.category_id or category.category_id,
                    "name": series.name,
                    "image_url": artwork.image_url if artwork else series.cover,
                    "season_count": len(info.season_numbers()) if info else 0,
                    "episode_count": info.episode_count() if info else 0,
                    "cache_fingerprint": fingerprint,
                    "updated_at": now,
                }
        return rows


class VodPopulator(TablePopulator):
    """Writes one ``MovieRecord`` per cached movie and drops the rest."""

    record_type = MovieRecord
    key_column = "stream_id"
    label = "movies"

    def _collect(self) -> dict[int, dict[str, Any]]:
        rows: dict[int, dict[str, Any]] = {}
        fingerprint = self._fingerprint()
        now = datetime.now(timezone.utc)
        for category in self._cache.get_categories() or []:
            for movie in self._cache.get_movies(category.category_id) or []:
                if movie.stream_id in rows:
                    continue
                artwork = self._cache.get_artwork(movie.stream_id)
                rows[movie.stream_id] = {
                    "category_id": movie.category_id or category.category_id,
                    "name": movie.name,
                    "image_url": artwork.image_url if artwork else movie.stream_icon,
                    "container_extension": movie.container_extension,
                    "cache_fingerprint": fingerprint,
                    "updated_at": now,
                }
        return rows
