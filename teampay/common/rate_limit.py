"""Fixed-window rate limiting keyed by caller identity.

`RateLimiter` keeps counters in a bounded in-process LRU map, so limits are
per-process. `RedisRateLimiter` offers the same `check` contract against a
shared Redis for multi-instance deployments.
"""

import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable

import redis


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    @property
    def reset(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)

    def retry_after_seconds(self, now: float | None = None) -> int:
        """Whole seconds until the window resets, never less than one."""

        now = time.time() if now is None else now
        return max(1, math.ceil(self.reset_at - now))


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """In-memory fixed-window limiter with LRU eviction."""

    def __init__(
        self,
        interval_seconds: float = 60.0,
        max_keys: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._windows: OrderedDict[str, _Window] = OrderedDict()
        self._lock = Lock()

    def check(self, key: str, limit: int) -> RateLimitResult:
        """Count one hit for `key` and report whether it is within `limit`."""

        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = _Window(count=0, reset_at=now + self.interval_seconds)
            window.count += 1
            self._windows[key] = window
            self._windows.move_to_end(key)
            while len(self._windows) > self.max_keys:
                self._windows.popitem(last=False)
            count, reset_at = window.count, window.reset_at

        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimiter:
    """Shared fixed-window limiter backed by Redis INCR + PEXPIRE."""

    def __init__(
        self,
        client: redis.Redis,
        interval_seconds: float = 60.0,
        namespace: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.interval_seconds = interval_seconds
        self.namespace = namespace
        self._clock = clock

    def check(self, key: str, limit: int) -> RateLimitResult:
        now = self._clock()
        window_ms = int(self.interval_seconds * 1000)
        redis_key = f"{self.namespace}:{key}"

        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        count, ttl_ms = pipe.execute()
        if ttl_ms is None or ttl_ms < 0:
            # First hit in this window (or a key that lost its expiry).
            self.client.pexpire(redis_key, window_ms)
            ttl_ms = window_ms

        count = int(count)
        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=now + ttl_ms / 1000.0,
        )


def build_rate_limiters(settings) -> dict[str, RateLimiter | RedisRateLimiter]:
    """Create the named limiters (`payment`, `api`, `auth`) for the configured backend."""

    intervals = {"payment": 60.0, "api": 60.0, "auth": 15 * 60.0}
    if settings.rate_limit_backend == "redis":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return {
            name: RedisRateLimiter(client, interval_seconds=interval, namespace=f"ratelimit:{name}")
            for name, interval in intervals.items()
        }
    if settings.rate_limit_backend != "memory":
        raise ValueError(f"unknown rate limit backend: {settings.rate_limit_backend}")
    capacity = {"payment": 10_000, "api": 10_000, "auth": 1_000}
    return {
        name: RateLimiter(interval_seconds=interval, max_keys=capacity[name])
        for name, interval in intervals.items()
    }
