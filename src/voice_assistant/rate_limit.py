"""Per-identity sliding-window request limiter."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable

from voice_assistant.errors import RateLimitedError


class SlidingWindowRateLimiter:
    """Allows at most ``max_requests`` per identity within any ``window_seconds`` span."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 15 * 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def remaining(self, identity: str) -> int:
        hits = self._prune(identity, self._clock())
        return self._max_requests - len(hits)

    def acquire(self, identity: str) -> None:
        """Record one request for ``identity`` or raise RateLimitedError when over budget."""
        now = self._clock()
        hits = self._prune(identity, now)
        if len(hits) >= self._max_requests:
            retry_after = hits[0] + self._window_seconds - now
            raise RateLimitedError(
                f"Too many synthesis requests for {identity!r}; retry in {retry_after:.0f}s",
                retry_after_seconds=retry_after,
            )
        hits.append(now)
        self._hits[identity] = hits

    def _prune(self, identity: str, now: float) -> deque[float]:
        hits = self._hits.get(identity)
        if hits is None:
            return deque()
        cutoff = now - self._window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[identity]
        return hits
