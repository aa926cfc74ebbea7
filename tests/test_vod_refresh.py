from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import urlencode

from app.config import ConfigurationStore, Settings
from app.models import Category, Movie
from app.services.artwork import ArtworkResolver
from app.services.cache_store import VersionedCacheStore
from app.services.cancellation import CancellationToken
from app.services.catalog_cache import CatalogCache
from app.services.catalog_refresh import RefreshState, VodRefreshCounts
from app.services.failure_tracker import FailureTracker
from app.services.retry import RetryExecutor
from app.services.tmdb import MetadataSearchResult
from app.services.vod_refresh import VodRefreshOrchestrator


class FakeVodXtream:
    def __init__(self, categories: list[Category], movies: dict[int, list[Movie]]) -> None:
        self.categories = categories
        self.movies = movies
        self.stream_calls: list[int] = []

    def configure(self, settings: Settings) -> None:
        self.settings = settings

    def target(self, action: str, **params: Any) -> str:
        return f"http://panel.example/player_api.php?{urlencode({'action': action, **params})}"

    async def get_vod_categories(self) -> list[Category]:
        return list(self.categories)

    async def get_vod_streams(self, category_id: int) -> list[Movie]:
        self.stream_calls.append(category_id)
        return list(self.movies.get(category_id, []))


class FakeMovieProvider:
    def __init__(self, images: dict[str, str], *, on_search=None) -> None:
        self.images = images
        self.on_search = on_search
        self.id_calls: list[str] = []

    async def search_by_name(self, term: str) -> list[MetadataSearchResult]:
        if self.on_search is not None:
            self.on_search(term)
        image = self.images.get(term)
        return [MetadataSearchResult("77", term, image)] if image else []

    async def search_by_external_id(self, tmdb_id: str) -> list[MetadataSearchResult]:
        self.id_calls.append(tmdb_id)
        return [MetadataSearchResult(tmdb_id, "", f"https://img/{tmdb_id}.jpg")]


def _build(
    xtream: FakeVodXtream,
    *,
    provider: FakeMovieProvider | None = None,
    populated: list[bool] | None = None,
    **overrides: Any,
) -> tuple[VodRefreshOrchestrator, CatalogCache]:
    values = {"MIN_REQUEST_DELAY_MS": 0, "ENABLE_VOD_ARTWORK": provider is not None}
    values.update(overrides)
    config_store = ConfigurationStore(Settings(_env_file=None, **values))
    cache = CatalogCache(
        VersionedCacheStore(config_store.vod_cache_relevant_hash, namespace="vod_cache")
    )

    async def no_sleep(_: float) -> None:
        return None

    async def on_populated() -> None:
        if populated is not None:
            populated.append(True)

    orchestrator = VodRefreshOrchestrator(
        config_store,
        xtream,  # type: ignore[arg-type]
        cache,
        RetryExecutor(FailureTracker(), sleep=no_sleep),
        RefreshState(counts=VodRefreshCounts()),
        artwork=ArtworkResolver(provider, cache) if provider is not None else None,
        on_populated=on_populated,
    )
    return orchestrator, cache


def _movies() -> tuple[list[Category], dict[int, list[Movie]]]:
    categories = [
        Category(category_id=7, category_name="Action"),
        Category(category_id=8, category_name="Crime"),
        Category(category_id=9, category_name="Kids"),
    ]
    heat = Movie(stream_id=501, name="Heat (1995)")
    movies = {
        7: [heat, Movie(stream_id=502, name="Ronin")],
        8: [heat],
        9: [Movie(stream_id=900, name="Cars")],
    }
    return categories, movies


def test_vod_refresh_caches_categories_and_movies() -> None:
    categories, movies = _movies()
    xtream = FakeVodXtream(categories, movies)
    populated: list[bool] = []
    orchestrator, cache = _build(xtream, populated=populated, VOD_CATEGORIES="7,8")

    async def runner() -> None:
        outcome = await orchestrator.refresh(CancellationToken())
        await orchestrator.drain()
        assert outcome.completed

    asyncio.run(runner())

    state = orchestrator.state
    assert xtream.stream_calls == [7, 8]
    assert [category.category_id for category in cache.get_categories()] == [7, 8]
    assert [movie.stream_id for movie in cache.get_movies(7)] == [501, 502]
    assert cache.get_movies(9) is None
    assert state.counts.movies == 2
    assert state.counts.categories == 2
    assert state.status == "Completed: 2 movies"
    assert state.progress == 1.0
    assert cache.store.current_prefix().startswith("vod_cache_")
    assert populated == [True]


def test_vod_artwork_uses_overrides_and_search() -> None:
    categories, movies = _movies()
    xtream = FakeVodXtream(categories, movies)
    provider = FakeMovieProvider({"Heat": "https://img/heat.jpg"})
    orchestrator, cache = _build(
        xtream, provider=provider, VOD_CATEGORIES="7", TITLE_OVERRIDES="Ronin=8195"
    )

    asyncio.run(orchestrator.refresh(CancellationToken()))

    counts = orchestrator.state.counts
    assert counts.artwork_found == 2
    assert counts.artwork_missing == 0
    assert cache.get_artwork(501).image_url == "https://img/heat.jpg"
    assert cache.get_artwork(502).source == "override"
    assert cache.get_external_id(502) == "8195"
    assert provider.id_calls == ["8195"]


def test_vod_refresh_cancelled_during_artwork() -> None:
    categories, movies = _movies()
    xtream = FakeVodXtream(categories, movies)
    token = CancellationToken()
    provider = FakeMovieProvider({}, on_search=lambda _: token.cancel())
    orchestrator, cache = _build(xtream, provider=provider, REFRESH_PARALLELISM=1)

    outcome = asyncio.run(orchestrator.refresh(token))

    assert outcome.cancelled
    assert orchestrator.state.status == "Cancelled"
    assert orchestrator.state.completed_at is None
    assert cache.get_movies(7) is not None
