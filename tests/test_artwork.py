from __future__ import annotations

import asyncio

import pytest

from app.services.artwork import (
    ArtworkResolver,
    TitleOverrides,
    generate_search_terms,
    parse_title_overrides,
)
from app.services.cache_store import VersionedCacheStore
from app.services.cancellation import RefreshCancelled
from app.services.catalog_cache import CatalogCache
from app.services.tmdb import MetadataSearchResult


class FakeProvider:
    def __init__(
        self,
        by_name: dict[str, list[MetadataSearchResult]] | None = None,
        by_id: dict[str, list[MetadataSearchResult]] | None = None,
        error: BaseException | None = None,
    ) -> None:
        self.by_name = by_name or {}
        self.by_id = by_id or {}
        self.error = error
        self.name_calls: list[str] = []
        self.id_calls: list[str] = []

    async def search_by_name(self, term: str) -> list[MetadataSearchResult]:
        self.name_calls.append(term)
        if self.error is not None:
            raise self.error
        return self.by_name.get(term, [])

    async def search_by_external_id(self, tmdb_id: str) -> list[MetadataSearchResult]:
        self.id_calls.append(tmdb_id)
        return self.by_id.get(tmdb_id, [])


def _result(tmdb_id: str, image_url: str) -> MetadataSearchResult:
    return MetadataSearchResult(tmdb_id=tmdb_id, name="", image_url=image_url)


def _resolver(provider: FakeProvider) -> tuple[ArtworkResolver, CatalogCache]:
    cache = CatalogCache(VersionedCacheStore(lambda: "fp"))
    return ArtworkResolver(provider, cache), cache


def test_override_takes_precedence_over_search() -> None:
    provider = FakeProvider(
        by_name={"Show": [_result("1", "https://img/search.jpg")]},
        by_id={"999": [_result("999", "https://img/override.jpg")]},
    )
    resolver, cache = _resolver(provider)
    overrides = parse_title_overrides("show=999")

    image = asyncio.run(resolver.resolve(5, "Show", overrides))

    assert image == "https://img/override.jpg"
    assert provider.id_calls == ["999"]
    assert provider.name_calls == []
    record = cache.get_artwork(5)
    assert record is not None
    assert record.source == "override"
    assert cache.get_external_id(5) == "999"


def test_override_without_image_falls_back_to_search() -> None:
    provider = FakeProvider(
        by_name={"Show": [_result("1", "https://img/search.jpg")]},
        by_id={"999": [_result("999", "")]},
    )
    resolver, cache = _resolver(provider)

    image = asyncio.run(resolver.resolve(5, "[NL] Show", parse_title_overrides("Show=999")))

    assert image == "https://img/search.jpg"
    assert provider.name_calls == ["Show"]
    assert cache.get_artwork(5).source == "search"


def test_search_terms_and_placeholder_skip() -> None:
    """Each variant is tried in order and placeholder images are ignored."""

    provider = FakeProvider(
        by_name={
            "Dark (2017) (Dubbed)": [],
            "Dark (2017)": [_result("2", "https://img/missing/poster.jpg")],
            "Dark": [_result("70523", "https://img/dark.jpg")],
        }
    )
    resolver, cache = _resolver(provider)

    image = asyncio.run(resolver.resolve(7, "Dark (2017) (Dubbed)", TitleOverrides()))

    assert provider.name_calls == ["Dark (2017) (Dubbed)", "Dark (2017)", "Dark"]
    assert image == "https://img/dark.jpg"
    record = cache.get_artwork(7)
    assert record.search_term == "Dark"
    assert cache.get_external_id(7) == "70523"


def test_no_match_returns_none_without_caching() -> None:
    provider = FakeProvider()
    resolver, cache = _resolver(provider)

    assert asyncio.run(resolver.resolve(3, "Unknown Show", TitleOverrides())) is None
    assert cache.get_artwork(3) is None


def test_empty_clean_title_skips_lookup() -> None:
    provider = FakeProvider()
    resolver, _ = _resolver(provider)

    assert asyncio.run(resolver.resolve(3, "[NL] 〈4K〉", TitleOverrides())) is None
    assert provider.name_calls == []


def test_provider_errors_are_contained() -> None:
    provider = FakeProvider(error=RuntimeError("tmdb down"))
    resolver, _ = _resolver(provider)

    assert asyncio.run(resolver.resolve(3, "Show", TitleOverrides())) is None


def test_cancellation_propagates() -> None:
    provider = FakeProvider(error=RefreshCancelled())
    resolver, _ = _resolver(provider)

    with pytest.raises(RefreshCancelled):
        asyncio.run(resolver.resolve(3, "Show", TitleOverrides()))


def test_generate_search_terms_language_variant() -> None:
    assert generate_search_terms("De Luizenmoeder (NL Gesproken)") == [
        "De Luizenmoeder (NL Gesproken)",
        "De Luizenmoeder",
    ]
    assert generate_search_terms("Dark") == ["Dark"]


def test_generate_search_terms_year_variant_without_language() -> None:
    assert generate_search_terms("Fargo (2014)") == ["Fargo (2014)", "Fargo"]


def test_parse_title_overrides_skips_malformed_lines() -> None:
    overrides = parse_title_overrides(
        "Breaking Bad=1396\n"
        "no separator here\n"
        "=123\n"
        "Empty Value=\n"
        "  Equals = In=Value  \n"
    )

    assert dict(overrides) == {"breaking bad": "1396", "equals": "In=Value"}
    assert overrides["BREAKING BAD"] == "1396"
    assert "Breaking bad" in overrides
    assert overrides.get("missing") is None


def test_parse_title_overrides_blank_text() -> None:
    assert parse_title_overrides("") == {}
    assert parse_title_overrides(None) == {}


def test_resolve_writes_to_the_given_cache_view() -> None:
    provider = FakeProvider(by_name={"Show": [_result("1", "https://img/show.jpg")]})
    resolver, cache = _resolver(provider)
    pinned = cache.pinned()
    cache.store.bump_generation()

    image = asyncio.run(resolver.resolve(5, "Show", TitleOverrides(), cache=pinned))

    assert image == "https://img/show.jpg"
    assert cache.get_artwork(5) is None
    assert pinned.get_artwork(5).image_url == "https://img/show.jpg"
