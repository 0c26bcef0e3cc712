"""Bearer-token acquisition and caching for the authenticated speech vendor."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

import httpx

from voice_assistant.errors import TokenAcquisitionError
from voice_assistant.models import AccessToken

DAY_SECONDS = 24 * 60 * 60


class TokenCache:
    """Caches one vendor access token and refreshes it before it expires.

    The cached value is reused only while ``now < expires_at - safety_margin``.
    ``expires_at`` is the server's ``expires_in`` capped at the cache policy
    (29 days by default, the vendor issues 30-day tokens).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_url: str,
        *,
        cache_seconds: float = 29 * DAY_SECONDS,
        safety_margin_seconds: float = DAY_SECONDS,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._token_url = token_url
        self._cache_seconds = cache_seconds
        self._safety_margin_seconds = safety_margin_seconds
        self._clock = clock
        self._logger = logger or logging.getLogger("voice_assistant.token_cache")
        self._token: AccessToken | None = None
        self._refresh_lock: asyncio.Lock | None = None

    def is_fresh(self) -> bool:
        """Whether the cached token may be reused right now."""
        if self._token is None:
            return False
        return self._clock() < self._token.expires_at - self._safety_margin_seconds

    async def get(self) -> str:
        """Return a usable token value, refreshing the cache first when needed."""
        if self.is_fresh():
            return self._token.value

        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            if self.is_fresh():
                return self._token.value
            self._token = await self._acquire()
            return self._token.value

    def invalidate(self) -> None:
        self._token = None

    async def _acquire(self) -> AccessToken:
        requested_at = self._clock()
        try:
            response = await self._client.post(self._token_url)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise TokenAcquisitionError(
                f"Token endpoint returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise TokenAcquisitionError(f"Token request failed: {exc}") from exc

        value = payload.get("access_token") if isinstance(payload, dict) else None
        if not value:
            raise TokenAcquisitionError("Token endpoint response carried no access_token")

        lifetime = self._cache_seconds
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            lifetime = min(float(expires_in), self._cache_seconds)

        token = AccessToken(value=value, expires_at=requested_at + lifetime)
        self._logger.info("token_refreshed", extra={"lifetime_seconds": lifetime})
        return token
