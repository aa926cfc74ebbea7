"""Bounded retries with exponential backoff for outbound requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from ..config import Settings
from ..errors import PersistentNetworkError, TransientNetworkError
from .cancellation import CancellationToken, RefreshCancelled
from .failure_tracker import FailureTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry settings captured once at the start of a refresh pass."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    raise_on_failure: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        max_attempts = settings.retry_max_attempts if settings.enable_retry else 1
        return cls(
            max_attempts=max(1, max_attempts),
            initial_delay=settings.retry_initial_delay_ms / 1000,
            raise_on_failure=settings.throw_on_persistent_failure,
        )


def is_retryable(exc: BaseException) -> bool:
    """Return whether ``exc`` is a server-side or network-level failure."""

    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class RetryExecutor:
    """Runs a request with retries, skipping targets known to be failing."""

    def __init__(
        self,
        failure_tracker: FailureTracker,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._failures = failure_tracker
        self._sleep = sleep

    @property
    def failure_tracker(self) -> FailureTracker:
        return self._failures

    async def execute_with_retry(
        self,
        target: str,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        token: CancellationToken | None = None,
        raise_on_failure: bool = False,
    ) -> T | None:
        """Return the result of ``operation`` or ``None`` once it keeps failing."""

        if self._failures.is_known_failure(target):
            logger.debug("Skipping known failing target %s", target)
            if raise_on_failure:
                raise PersistentNetworkError(target, 0, f"{target} is a known failure")
            return None

        attempts = max(1, max_attempts)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            if token is not None:
                token.raise_if_cancelled()
            try:
                return await operation()
            except (RefreshCancelled, asyncio.CancelledError):
                raise
            except Exception as exc:
                if not is_retryable(exc):
                    logger.warning("Request to %s failed without retry: %s", target, exc)
                    if raise_on_failure:
                        raise
                    return None
                last_error = exc

            if attempt < attempts:
                delay = initial_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Attempt %s/%s for %s failed (%s). Retrying in %.1fs",
                    attempt,
                    attempts,
                    target,
                    last_error,
                    delay,
                )
                await self._pause(delay, token)

        details = f"{type(last_error).__name__}: {last_error}"
        self._failures.record_failure(target, details)
        logger.warning(
            "Persistent failure for %s after %s attempt(s): %s", target, attempts, details
        )
        if raise_on_failure:
            raise PersistentNetworkError(target, attempts) from last_error
        return None

    async def _pause(self, delay: float, token: CancellationToken | None) -> None:
        if self._sleep is not None:
            await self._sleep(delay)
        elif token is not None:
            await token.sleep(delay)
        else:
            await asyncio.sleep(delay)
