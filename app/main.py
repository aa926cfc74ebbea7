"""Entry point for the FastAPI-powered catalog cache service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from operator import attrgetter
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import ConfigurationStore, ConfigurationUpdate, settings
from .database import Database
from .services.artwork import ArtworkResolver
from .services.cache_store import VersionedCacheStore
from .services.catalog_cache import CatalogCache
from .services.catalog_refresh import RefreshOrchestrator, RefreshState, VodRefreshCounts
from .services.failure_tracker import FailureTracker
from .services.populator import CatalogPopulator, VodPopulator
from .services.refresh_guard import ConcurrencyGuard
from .services.retry import RetryExecutor
from .services.scheduler import RefreshScheduler
from .services.tmdb import TMDBClient
from .services.vod_refresh import VodRefreshOrchestrator
from .services.xtream import XtreamClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    xtream_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    )
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    config_store = ConfigurationStore(settings)
    cache_store = VersionedCacheStore(config_store.cache_relevant_hash)
    catalog_cache = CatalogCache(cache_store, timedelta(hours=settings.cache_ttl_hours))
    failure_tracker = FailureTracker(timedelta(hours=settings.failure_cache_ttl_hours))
    vod_store = VersionedCacheStore(
        config_store.vod_cache_relevant_hash, namespace="vod_cache"
    )
    vod_cache = CatalogCache(vod_store, timedelta(hours=settings.cache_ttl_hours))
    artwork = vod_artwork = None
    if settings.tmdb_api_key:
        artwork = ArtworkResolver(TMDBClient(settings, tmdb_http), catalog_cache)
        vod_artwork = ArtworkResolver(
            TMDBClient(settings, tmdb_http, media="movie"), vod_cache
        )
    else:
        logger.info("TMDB_API_KEY not set, artwork enrichment is disabled")
    populator = CatalogPopulator(
        catalog_cache, database.session_factory, config_store.cache_relevant_hash
    )
    orchestrator = RefreshOrchestrator(
        config_store,
        XtreamClient(settings, xtream_http),
        catalog_cache,
        RetryExecutor(failure_tracker),
        RefreshState(),
        artwork=artwork,
        on_populated=populator.populate,
    )
    guard = ConcurrencyGuard(orchestrator, config_store, catalog_cache)

    vod_populator = VodPopulator(
        vod_cache, database.session_factory, config_store.vod_cache_relevant_hash
    )
    vod_orchestrator = VodRefreshOrchestrator(
        config_store,
        XtreamClient(settings, xtream_http),
        vod_cache,
        RetryExecutor(failure_tracker),
        RefreshState(counts=VodRefreshCounts()),
        artwork=vod_artwork,
        on_populated=vod_populator.populate,
    )
    vod_guard = ConcurrencyGuard(
        vod_orchestrator,
        config_store,
        vod_cache,
        name="VOD",
        enabled=attrgetter("enable_vod_caching"),
        affected_by=attrgetter("vod_cache_relevant"),
    )
    schedulers = [
        RefreshScheduler(guard, config_store),
        RefreshScheduler(vod_guard, config_store),
    ]

    fastapi_app.state.config_store = config_store
    fastapi_app.state.catalog_cache = catalog_cache
    fastapi_app.state.failure_tracker = failure_tracker
    fastapi_app.state.refresh_guard = guard
    fastapi_app.state.vod_cache = vod_cache
    fastapi_app.state.vod_refresh_guard = vod_guard
    fastapi_app.state.database = database
    for scheduler in schedulers:
        await scheduler.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        for scheduler in schedulers:
            await scheduler.stop()
        await guard.shutdown()
        await vod_guard.shutdown()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Eager Xtream series and VOD catalog cache with TMDB artwork",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_refresh_guard(app: FastAPI, attribute: str = "refresh_guard") -> ConcurrencyGuard:
    guard = getattr(app.state, attribute, None)
    if not isinstance(guard, ConcurrencyGuard):
        raise RuntimeError(f"Refresh guard {attribute!r} not initialised")
    return guard


def get_catalog_cache(app: FastAPI, attribute: str = "catalog_cache") -> CatalogCache:
    cache = getattr(app.state, attribute, None)
    if not isinstance(cache, CatalogCache):
        raise RuntimeError(f"Catalog cache {attribute!r} not initialised")
    return cache


def get_config_store(app: FastAPI) -> ConfigurationStore:
    store = getattr(app.state, "config_store", None)
    if not isinstance(store, ConfigurationStore):
        raise RuntimeError("Configuration store not initialised")
    return store


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def _cached_or_404(value: Any, detail: str) -> JSONResponse:
    if value is None:
        raise HTTPException(status_code=404, detail=detail)
    return JSONResponse(_dump(value))


def _register_cache_controls(fastapi_app: FastAPI, prefix: str, guard_attribute: str) -> None:
    """Expose refresh, cancel, clear and status for one catalog under ``prefix``."""

    @fastapi_app.post(f"{prefix}/refresh", name=f"{guard_attribute}_refresh")
    async def start_refresh() -> dict[str, bool]:
        guard = get_refresh_guard(fastapi_app, guard_attribute)
        started = guard.try_start_refresh()
        guard.orchestrator.schedule_populate()
        return {"started": started}

    @fastapi_app.post(f"{prefix}/cancel", name=f"{guard_attribute}_cancel")
    async def cancel_refresh() -> dict[str, bool]:
        return {"cancelled": get_refresh_guard(fastapi_app, guard_attribute).cancel_refresh()}

    @fastapi_app.post(f"{prefix}/clear", name=f"{guard_attribute}_clear")
    async def clear_cache() -> dict[str, int]:
        guard = get_refresh_guard(fastapi_app, guard_attribute)
        generation = guard.invalidate()
        guard.orchestrator.schedule_populate()
        return {"generation": generation}

    @fastapi_app.get(f"{prefix}/status", name=f"{guard_attribute}_status")
    async def cache_status() -> JSONResponse:
        return JSONResponse(get_refresh_guard(fastapi_app, guard_attribute).status())


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    _register_cache_controls(fastapi_app, "/api/cache", "refresh_guard")
    _register_cache_controls(fastapi_app, "/api/vod/cache", "vod_refresh_guard")

    @fastapi_app.get("/api/cache/failures")
    async def cache_failures() -> JSONResponse:
        tracker: FailureTracker = fastapi_app.state.failure_tracker
        return JSONResponse(tracker.stats().to_payload())

    @fastapi_app.post("/api/config")
    async def update_configuration(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid payload") from exc
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        config_store = get_config_store(fastapi_app)
        try:
            update = ConfigurationUpdate.model_validate(body)
            change = config_store.update(update.changes())
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False, include_context=False)
            ) from exc
        restarted = await get_refresh_guard(fastapi_app).restart_for(change)
        vod_restarted = await get_refresh_guard(
            fastapi_app, "vod_refresh_guard"
        ).restart_for(change)
        return JSONResponse(
            {
                "restarted": restarted,
                "vodRestarted": vod_restarted,
                "cacheFingerprint": config_store.cache_relevant_hash(),
                "vodCacheFingerprint": config_store.vod_cache_relevant_hash(),
            }
        )

    @fastapi_app.get("/api/catalog/categories")
    async def list_categories() -> JSONResponse:
        cache = get_catalog_cache(fastapi_app)
        return _cached_or_404(cache.get_categories(), "Categories are not cached")

    @fastapi_app.get("/api/catalog/categories/{category_id}/series")
    async def list_series(category_id: int) -> JSONResponse:
        cache = get_catalog_cache(fastapi_app)
        return _cached_or_404(
            cache.get_series_list(category_id),
            f"Series for category {category_id} are not cached",
        )

    @fastapi_app.get("/api/catalog/series/{series_id}")
    async def series_info(series_id: int) -> JSONResponse:
        cache = get_catalog_cache(fastapi_app)
        return _cached_or_404(
            cache.get_series_info(series_id), f"Series {series_id} is not cached"
        )

    @fastapi_app.get("/api/catalog/series/{series_id}/seasons/{season_number}/episodes")
    async def season_episodes(series_id: int, season_number: int) -> JSONResponse:
        cache = get_catalog_cache(fastapi_app)
        return _cached_or_404(
            cache.get_episodes(series_id, season_number),
            f"Season {season_number} of series {series_id} is not cached",
        )

    @fastapi_app.get("/api/catalog/series/{series_id}/artwork")
    async def series_artwork(series_id: int) -> JSONResponse:
        cache = get_catalog_cache(fastapi_app)
        return _cached_or_404(
            cache.get_artwork(series_id), f"No artwork cached for series {series_id}"
        )

    @fastapi_app.get("/api/vod/categories")
    async def list_vod_categories() -> JSONResponse:
        cache = get_catalog_cache(fastapi_app, "vod_cache")
        return _cached_or_404(cache.get_categories(), "VOD categories are not cached")

    @fastapi_app.get("/api/vod/categories/{category_id}/movies")
    async def list_movies(category_id: int) -> JSONResponse:
        cache = get_catalog_cache(fastapi_app, "vod_cache")
        return _cached_or_404(
            cache.get_movies(category_id),
            f"Movies for category {category_id} are not cached",
        )

    @fastapi_app.get("/api/vod/movies/{stream_id}/artwork")
    async def movie_artwork(stream_id: int) -> JSONResponse:
        cache = get_catalog_cache(fastapi_app, "vod_cache")
        return _cached_or_404(
            cache.get_artwork(stream_id), f"No artwork cached for movie {stream_id}"
        )


app = create_app()
