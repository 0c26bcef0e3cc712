from __future__ import annotations

import pytest

from voice_assistant.errors import RateLimitedError
from voice_assistant.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_limit_is_per_identity_and_window_slides() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=clock)

    for _ in range(3):
        limiter.acquire("alice")
        clock.now += 10

    with pytest.raises(RateLimitedError) as excinfo:
        limiter.acquire("alice")
    assert excinfo.value.retry_after_seconds == pytest.approx(30)

    limiter.acquire("bob")
    assert limiter.remaining("bob") == 2

    clock.now = 61
    limiter.acquire("alice")
    assert limiter.remaining("alice") == 0


def test_rejects_non_positive_budget() -> None:
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(max_requests=0)


def test_idle_identities_are_forgotten() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)

    limiter.acquire("alice")
    assert limiter.remaining("carol") == 2
    assert "carol" not in limiter._hits

    clock.now = 120
    assert limiter.remaining("alice") == 2
    assert limiter._hits == {}
