from __future__ import annotations

import httpx
import pytest

from app.config import Settings
from app.services.tmdb import TMDBClient


def _client(handler) -> tuple[TMDBClient, httpx.AsyncClient]:
    settings = Settings(_env_file=None, TMDB_API_KEY="key", TMDB_LANGUAGE="nl-NL")
    http_client = httpx.AsyncClient(
        base_url="https://api.themoviedb.org/3",
        transport=httpx.MockTransport(handler),
    )
    return TMDBClient(settings, http_client), http_client


def test_client_requires_api_key() -> None:
    with pytest.raises(ValueError):
        TMDBClient(Settings(_env_file=None), httpx.AsyncClient())


@pytest.mark.anyio("asyncio")
async def test_search_by_name_maps_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/search/tv"
        assert request.url.params["query"] == "Dark"
        assert request.url.params["language"] == "nl-NL"
        assert request.url.params["api_key"] == "key"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"id": 70523, "name": "Dark", "poster_path": "/dark.jpg", "first_air_date": "2017-12-01"},
                    {"id": 1, "name": "No Poster", "poster_path": None},
                ]
            },
        )

    client, http_client = _client(handler)
    async with http_client:
        results = await client.search_by_name("Dark")

    assert results[0].tmdb_id == "70523"
    assert results[0].image_url == "https://image.tmdb.org/t/p/w500/dark.jpg"
    assert results[0].year == 2017
    assert results[1].image_url == ""


@pytest.mark.anyio("asyncio")
async def test_search_by_external_id_returns_single_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/tv/1399"
        return httpx.Response(
            200, json={"id": 1399, "name": "Game of Thrones", "poster_path": "/got.jpg"}
        )

    client, http_client = _client(handler)
    async with http_client:
        results = await client.search_by_external_id("1399")

    assert len(results) == 1
    assert results[0].name == "Game of Thrones"


@pytest.mark.anyio("asyncio")
async def test_error_status_yields_no_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status_message": "not found"})

    client, http_client = _client(handler)
    async with http_client:
        assert await client.search_by_name("Nothing") == []
        assert await client.search_by_external_id("0") == []


@pytest.mark.anyio("asyncio")
async def test_movie_media_uses_movie_endpoints() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        movie = {"id": 949, "title": "Heat", "poster_path": "/heat.jpg", "release_date": "1995-12-15"}
        if request.url.path.startswith("/3/search/"):
            return httpx.Response(200, json={"results": [movie]})
        return httpx.Response(200, json=movie)

    settings = Settings(_env_file=None, TMDB_API_KEY="key")
    http_client = httpx.AsyncClient(
        base_url="https://api.themoviedb.org/3",
        transport=httpx.MockTransport(handler),
    )
    client = TMDBClient(settings, http_client, media="movie")
    async with http_client:
        searched = await client.search_by_name("Heat")
        looked_up = await client.search_by_external_id("949")

    assert paths == ["/3/search/movie", "/3/movie/949"]
    assert searched[0].name == "Heat"
    assert searched[0].year == 1995
    assert looked_up[0].image_url == "https://image.tmdb.org/t/p/w500/heat.jpg"
