"""In-process cache for the payment provider's OAuth2 bearer token.

Readers take the fast path without locking. On a miss the caller fetches a
new token with no lock held, then installs it under a short lock after
re-checking whether a concurrent caller already installed a fresh one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = timedelta(seconds=60)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at: datetime

    def is_fresh(self, now: datetime, margin: timedelta) -> bool:
        """True while ``now`` is strictly before expiry minus the safety margin."""
        return now < self.expires_at - margin


TokenFetcher = Callable[[], Awaitable[CachedToken]]


class ProviderTokenCache:
    """Holds at most one provider token and refreshes it before it expires."""

    def __init__(
        self,
        fetcher: TokenFetcher,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetcher = fetcher
        self._margin = safety_margin
        self._clock = clock
        self._token: CachedToken | None = None
        self._install_lock = asyncio.Lock()

    @property
    def current(self) -> CachedToken | None:
        return self._token

    async def get_token(self) -> str:
        """Return a bearer token valid for at least the safety margin.

        Raises:
            ProviderAuthError: If a refresh was needed and the fetch failed.
        """
        token = self._token
        if token is not None and token.is_fresh(self._clock(), self._margin):
            return token.access_token

        fetched = await self._fetcher()

        async with self._install_lock:
            installed = self._token
            if installed is not None and installed.is_fresh(self._clock(), self._margin):
                return installed.access_token
            self._token = fetched
            logger.info("Installed provider token (expires_at=%s)", fetched.expires_at.isoformat())
            return fetched.access_token

    def invalidate(self, access_token: str | None = None) -> None:
        """Drop the installed token so the next call fetches a new one.

        When ``access_token`` is given, only that token is dropped; a newer
        token installed by another caller is kept.
        """
        if access_token is None or (self._token is not None and self._token.access_token == access_token):
            self._token = None
