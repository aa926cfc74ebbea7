"""Cooperative cancellation primitives for background refreshes."""

from __future__ import annotations

import asyncio
from contextlib import suppress


class RefreshCancelled(Exception):
    """Raised at a cancellation checkpoint once the token has been cancelled."""


class CancellationToken:
    """Single-use cancellation flag shared by one refresh pass."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RefreshCancelled()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` but wake up as soon as the token is cancelled."""

        if seconds > 0 and not self._event.is_set():
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._event.wait(), timeout=seconds)
        self.raise_if_cancelled()
