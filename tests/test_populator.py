from __future__ import annotations

import asyncio

from sqlalchemy import select

from app.database import Database
from app.db_models import MovieRecord, SeriesRecord
from app.models import ArtworkRecord, Category, Movie, Series, SeriesInfo
from app.services.cache_store import VersionedCacheStore
from app.services.catalog_cache import CatalogCache
from app.services.populator import CatalogPopulator, VodPopulator


def _fill_cache(cache: CatalogCache) -> None:
    cache.set_categories([Category(category_id=1), Category(category_id=2)])
    cache.set_series_list(
        1,
        [
            Series(series_id=10, name="Dark", cover="http://panel/dark.jpg"),
            Series(series_id=11, name="Lost", cover="http://panel/lost.jpg"),
        ],
    )
    cache.set_series_list(2, [Series(series_id=10, name="Dark")])
    cache.set_series_info(
        10,
        SeriesInfo.model_validate(
            {
                "seasons": [{"season_number": 1}, {"season_number": 2}],
                "episodes": {"1": [{"id": 1}, {"id": 2}], "2": [{"id": 3}]},
            }
        ),
    )
    cache.set_artwork(ArtworkRecord(entity_id=10, image_url="https://img/dark.jpg"))


async def _rows(database: Database) -> dict[int, SeriesRecord]:
    async with database.session() as session:
        result = await session.execute(select(SeriesRecord))
        return {record.series_id: record for record in result.scalars()}


def test_populate_upserts_and_removes_stale_rows(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
        await database.create_all()
        store = VersionedCacheStore(lambda: "fp0123456789abcd")
        cache = CatalogCache(store)
        populator = CatalogPopulator(
            cache, database.session_factory, lambda: "fp0123456789abcd"
        )
        try:
            async with database.session() as session:
                session.add(SeriesRecord(series_id=99, name="Gone"))
                await session.commit()

            _fill_cache(cache)
            result = await populator.populate()

            assert (result.upserted, result.removed) == (2, 1)
            rows = await _rows(database)
            assert sorted(rows) == [10, 11]
            assert rows[10].image_url == "https://img/dark.jpg"
            assert rows[10].season_count == 2
            assert rows[10].episode_count == 3
            assert rows[10].category_id == 1
            assert rows[11].image_url == "http://panel/lost.jpg"
            assert rows[11].season_count == 0

            cache.set_series_list(1, [Series(series_id=10, name="Dark (Updated)")])
            result = await populator.populate()
            assert (result.upserted, result.removed) == (1, 1)
            rows = await _rows(database)
            assert rows[10].name == "Dark (Updated)"
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_invalidated_cache_clears_table(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
        await database.create_all()
        store = VersionedCacheStore(lambda: "fp")
        cache = CatalogCache(store)
        populator = CatalogPopulator(cache, database.session_factory, lambda: "fp")
        try:
            _fill_cache(cache)
            await populator.populate()

            store.bump_generation()
            result = await populator.populate()

            assert result.removed == 2
            assert await _rows(database) == {}
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_populate_logs_and_swallows_database_errors(tmp_path) -> None:
    async def runner() -> None:
        # Tables are never created, so every query fails.
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'missing.db'}")
        cache = CatalogCache(VersionedCacheStore(lambda: "fp"))
        _fill_cache(cache)
        populator = CatalogPopulator(cache, database.session_factory, lambda: "fp")
        try:
            result = await populator.populate()
        finally:
            await database.dispose()

        assert (result.upserted, result.removed) == (0, 0)

    asyncio.run(runner())


def test_overlapping_populates_do_not_collide(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
        await database.create_all()
        cache = CatalogCache(VersionedCacheStore(lambda: "fp"))
        populator = CatalogPopulator(cache, database.session_factory, lambda: "fp")
        try:
            _fill_cache(cache)
            first, second = await asyncio.gather(populator.populate(), populator.populate())

            assert (first.upserted, second.upserted) == (2, 2)
            assert sorted(await _rows(database)) == [10, 11]
        finally:
            await database.dispose()

    asyncio.run(runner())


def test_vod_populate_writes_movie_rows(tmp_path) -> None:
    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
        await database.create_all()
        cache = CatalogCache(VersionedCacheStore(lambda: "fp", namespace="vod_cache"))
        populator = VodPopulator(cache, database.session_factory, lambda: "fp")
        try:
            cache.set_categories([Category(category_id=7)])
            cache.set_movies(
                7,
                [
                    Movie(stream_id=501, name="Heat", stream_icon="http://panel/heat.jpg"),
                    Movie(stream_id=502, name="Ronin", container_extension="mkv"),
                ],
            )
            cache.set_artwork(ArtworkRecord(entity_id=502, image_url="https://img/ronin.jpg"))

            result = await populator.populate()

            assert (result.upserted, result.removed) == (2, 0)
            async with database.session() as session:
                rows = {
                    record.stream_id: record
                    for record in (await session.execute(select(MovieRecord))).scalars()
                }
            assert rows[501].image_url == "http://panel/heat.jpg"
            assert rows[501].category_id == 7
            assert rows[502].image_url == "https://img/ronin.jpg"
            assert rows[502].container_extension == "mkv"
            assert await _rows(database) == {}
        finally:
            await database.dispose()

    asyncio.run(runner())
