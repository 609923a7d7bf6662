"""Admission control for the public API.

Two interchangeable backends share `check(identifier) -> RateLimitDecision`:

- `RedisSlidingWindowLimiter`: durable sliding-window counter shared by all
  processes.
- `InMemoryFixedWindowLimiter`: per-process fixed-window map, used when the
  durable backend is not configured or fails.

`TwoTierRateLimiter` tries the first and falls through to the second on any
backend error. Availability wins over exact global counting.
"""

from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import redis

from logging_utils import get_logger
from utils.time_utils import epoch_ms

logger = get_logger(__name__)

ANONYMOUS_IDENTIFIER = "anonymous"


@dataclass(frozen=True)
class RateLimitDecision:
    success: bool
    limit: int
    remaining: int
    # Epoch milliseconds at which the window frees up.
    reset: int
    backend: str = "memory"

    def retry_after_seconds(self, now_ms: int | None = None) -> int:
        now_ms = epoch_ms() if now_ms is None else now_ms
        return max(0, math.ceil((self.reset - now_ms) / 1000))

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


class RateLimiterBackend(Protocol):
    name: str

    def check(self, identifier: str) -> RateLimitDecision:
        ...


@dataclass
class _WindowRecord:
    count: int
    reset_ms: int


class InMemoryFixedWindowLimiter:
    """Thread-safe fixed-window counter keyed by client identifier.

    Each identifier gets `limit` admissions per window starting at its first
    request. Expired records are replaced on the next check and removed in
    bulk by `sweep()`.
    """

    name = "memory"

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.limit = int(limit)
        self.window_ms = int(float(window_seconds) * 1000)
        self._clock = clock
        self._lock = threading.Lock()
        self._records: Dict[str, _WindowRecord] = {}

    def check(self, identifier: str) -> RateLimitDecision:
        now_ms = epoch_ms(self._clock())

        with self._lock:
            record = self._records.get(identifier)

            if record is None or record.reset_ms <= now_ms:
                record = _WindowRecord(count=1, reset_ms=now_ms + self.window_ms)
                self._records[identifier] = record
                return RateLimitDecision(
                    True, self.limit, self.limit - 1, record.reset_ms, self.name
                )

            if record.count < self.limit:
                record.count += 1
                return RateLimitDecision(
                    True,
                    self.limit,
                    self.limit - record.count,
                    record.reset_ms,
                    self.name,
                )

            return RateLimitDecision(False, self.limit, 0, record.reset_ms, self.name)

    def sweep(self) -> int:
        """Drop expired records. Returns how many were removed."""
        now_ms = epoch_ms(self._clock())
        with self._lock:
            expired = [k for k, r in self._records.items() if r.reset_ms <= now_ms]
            for k in expired:
                del self._records[k]
        if expired:
            logger.debug("rate limiter sweep | removed=%s", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RedisSlidingWindowLimiter:
    """Sliding-window log in a Redis sorted set (one member per admitted request)."""

    name = "redis"

    def __init__(
        self,
        client: "redis.Redis",
        *,
        limit: int,
        window_seconds: float,
        prefix: str = "ratelimit:public",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.client = client
        self.limit = int(limit)
        self.window_ms = int(float(window_seconds) * 1000)
        self.prefix = prefix
        self._clock = clock

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    def check(self, identifier: str) -> RateLimitDecision:
        now_ms = epoch_ms(self._clock())
        key = self._key(identifier)
        member = f"{now_ms}-{uuid.uuid4().hex}"

        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now_ms - self.window_ms)
        pipe.zadd(key, {member: now_ms})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.pexpire(key, self.window_ms)
        _removed, _added, count, oldest, _ttl = pipe.execute()

        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        reset_ms = oldest_ms + self.window_ms

        if int(count) > self.limit:
            # Rejected requests do not consume a slot. The rejection stands
            # even if the cleanup fails; the entry expires with the window.
            try:
                self.client.zrem(key, member)
            except redis.RedisError as e:
                logger.warning(
                    "rate limiter cleanup failed | key=%s err=%s", key, e
                )
            return RateLimitDecision(False, self.limit, 0, reset_ms, self.name)

        return RateLimitDecision(
            True, self.limit, self.limit - int(count), reset_ms, self.name
        )


class TwoTierRateLimiter:
    def __init__(
        self,
        *,
        fallback: InMemoryFixedWindowLimiter,
        primary: Optional[RateLimiterBackend] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback

    @property
    def durable_configured(self) -> bool:
        return self.primary is not None

    def check(self, identifier: str) -> RateLimitDecision:
        if self.primary is not None:
            try:
                return self.primary.check(identifier)
            except Exception as e:
                logger.warning(
                    "durable rate limiter failed; using in-memory fallback | backend=%s err=%s",
                    getattr(self.primary, "name", "?"),
                    e,
                )
        return self.fallback.check(identifier)

    def sweep(self) -> int:
        return self.fallback.sweep()


def client_identifier(headers: Mapping[str, Any]) -> str:
    """Derive the rate-limit key: X-Forwarded-For, then X-Real-IP, then a shared bucket."""

    forwarded = (headers.get("X-Forwarded-For") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = (headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip

    return ANONYMOUS_IDENTIFIER


def build_rate_limiter(config: Mapping[str, Any]) -> TwoTierRateLimiter:
    """Build the limiter from app config. No Redis URL -> in-memory only."""

    limit = int(config.get("RATE_LIMIT_REQUESTS", 60))
    window = float(config.get("RATE_LIMIT_WINDOW_SECONDS", 60))

    fallback = InMemoryFixedWindowLimiter(limit=limit, window_seconds=window)

    primary: Optional[RateLimiterBackend] = None
    redis_url = config.get("REDIS_URL")
    if redis_url:
        timeout = float(config.get("REDIS_TIMEOUT_SECONDS", 1.0))
        client = redis.Redis.from_url(
            str(redis_url),
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        primary = RedisSlidingWindowLimiter(
            client,
            limit=limit,
            window_seconds=window,
            prefix=str(config.get("RATE_LIMIT_PREFIX", "ratelimit:public")),
        )
        logger.info("rate limiter using redis backend | limit=%s window_s=%s", limit, window)
    else:
        logger.info("rate limiter using in-memory backend | limit=%s window_s=%s", limit, window)

    return TwoTierRateLimiter(primary=primary, fallback=fallback)
