"""Fixed-window rate limiter behavior."""

from unittest.mock import MagicMock

import pytest

from teampay.common.rate_limit import RateLimiter, RedisRateLimiter, build_rate_limiters


class Tick:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_allows_exactly_limit_then_denies():
    """L calls pass, the (L+1)th is refused."""

    limiter = RateLimiter(interval_seconds=60, clock=Tick())
    results = [limiter.check("ip:1.2.3.4", 3) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]


def test_window_resets_after_interval():
    """Once the window elapses the counter starts over."""

    clock = Tick()
    limiter = RateLimiter(interval_seconds=60, clock=clock)
    for _ in range(2):
        limiter.check("k", 2)
    assert not limiter.check("k", 2).allowed

    clock.now += 61
    result = limiter.check("k", 2)
    assert result.allowed
    assert result.remaining == 1


def test_keys_are_independent():
    limiter = RateLimiter(clock=Tick())
    limiter.check("a", 1)
    assert not limiter.check("a", 1).allowed
    assert limiter.check("b", 1).allowed


def test_least_recently_used_key_is_evicted():
    """Capacity bounds memory; the coldest key is dropped first."""

    limiter = RateLimiter(max_keys=2, clock=Tick())
    limiter.check("a", 1)
    limiter.check("b", 1)
    limiter.check("a", 5)
    limiter.check("c", 1)

    assert len(limiter) == 2
    assert limiter.check("a", 5).remaining == 2
    # "b" was evicted, so it starts a fresh window.
    assert limiter.check("b", 1).allowed


def test_retry_after_is_rounded_up():
    clock = Tick(100.0)
    limiter = RateLimiter(interval_seconds=60, clock=clock)
    result = limiter.check("k", 1)

    assert result.retry_after_seconds(now=100.5) == 60
    assert result.retry_after_seconds(now=200.0) == 1


def test_redis_limiter_sets_expiry_on_first_hit():
    client = MagicMock()
    pipe = client.pipeline.return_value
    pipe.execute.return_value = [1, -1]
    limiter = RedisRateLimiter(client, interval_seconds=60, clock=Tick())

    result = limiter.check("ip:1", 2)

    assert result.allowed
    assert result.remaining == 1
    client.pexpire.assert_called_once_with("ratelimit:ip:1", 60_000)
    assert result.reset_at == pytest.approx(1_060.0)


def test_redis_limiter_denies_over_limit():
    client = MagicMock()
    client.pipeline.return_value.execute.return_value = [3, 15_000]
    limiter = RedisRateLimiter(client, interval_seconds=60, clock=Tick())

    result = limiter.check("ip:1", 2)

    assert not result.allowed
    assert result.remaining == 0
    client.pexpire.assert_not_called()
    assert result.reset_at == pytest.approx(1_015.0)


def test_build_rate_limiters_memory_windows(test_settings):
    limiters = build_rate_limiters(test_settings)

    assert set(limiters) == {"payment", "api", "auth"}
    assert limiters["auth"].interval_seconds == 900
    assert limiters["payment"].max_keys == 10_000


def test_build_rate_limiters_rejects_unknown_backend(test_settings):
    test_settings.rate_limit_backend = "memcached"
    with pytest.raises(ValueError):
        build_rate_limiters(test_settings)
