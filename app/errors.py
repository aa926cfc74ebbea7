"""Exception types raised by the catalog cache engine."""

from __future__ import annotations


class CatalogCacheError(Exception):
    """Base class for catalog cache errors."""


class TransientNetworkError(CatalogCacheError):
    """A request failed in a way that is worth retrying."""


class PersistentNetworkError(CatalogCacheError):
    """A request target kept failing after every retry attempt."""

    def __init__(self, target: str, attempts: int, message: str | None = None):
        self.target = target
        self.attempts = attempts
        super().__init__(
            message or f"{target} failed after {attempts} attempt(s)"
        )


class MalformedResponseError(CatalogCacheError):
    """The upstream returned a payload that does not match the expected shape."""
