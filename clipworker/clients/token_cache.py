"""
Process-local cache for short-lived third-party credentials.

The cached token is private to one worker process and never written to the
job store.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Refresh this many seconds before the provider-declared expiry
DEFAULT_REFRESH_MARGIN_SECONDS = 300.0


@dataclass
class CachedToken:
    value: str
    expires_at: float

    def is_valid(self, now: float, margin: float) -> bool:
        return now < self.expires_at - margin


TokenFetcher = Callable[[], Awaitable[tuple[str, float]]]


class TokenCache:
    """
    Holds one bearer token with an explicit expiry and refreshes it on miss.

    Args:
        fetch: Coroutine returning ``(token, expires_in_seconds)``.
        refresh_margin: Seconds before expiry at which the token counts as stale.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._token: CachedToken | None = None
        self._lock = asyncio.Lock()

    def peek(self) -> str | None:
        """Return the cached token if it is still valid, without refreshing."""
        if self._token and self._token.is_valid(self._clock(), self._refresh_margin):
            return self._token.value
        return None

    async def get(self) -> str:
        """Return a valid token, fetching a new one if the cache is empty or stale."""
        token = self.peek()
        if token is not None:
            return token

        async with self._lock:
            token = self.peek()
            if token is not None:
                return token

            value, expires_in = await self._fetch()
            self._token = CachedToken(value=value, expires_at=self._clock() + expires_in)
            logger.info("Fetched new access token", extra={"expires_in": expires_in})
            return value

    def invalidate(self) -> None:
        self._token = None
