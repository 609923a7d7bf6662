from __future__ import annotations

import pytest
import redis

from api.services.rate_limiter import (
    InMemoryFixedWindowLimiter,
    RateLimitDecision,
    RedisSlidingWindowLimiter,
    TwoTierRateLimiter,
    build_rate_limiter,
    client_identifier,
)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenRedis:
    """Every pipeline call fails like an unreachable server."""

    def pipeline(self, transaction: bool = True):
        raise redis.exceptions.ConnectionError("connection refused")


def test_fixed_window_admits_limit_then_rejects_then_resets():
    clock = FakeClock()
    limiter = InMemoryFixedWindowLimiter(limit=60, window_seconds=60, clock=clock)

    decisions = [limiter.check("1.2.3.4") for _ in range(60)]
    assert all(d.success for d in decisions)
    assert decisions[0].remaining == 59
    assert decisions[-1].remaining == 0

    clock.advance(30)
    rejected = limiter.check("1.2.3.4")
    assert rejected.success is False
    assert rejected.remaining == 0
    assert rejected.reset == decisions[0].reset

    clock.advance(31)
    again = limiter.check("1.2.3.4")
    assert again.success is True
    assert again.remaining == 59


def test_fixed_window_is_per_identifier():
    limiter = InMemoryFixedWindowLimiter(limit=1, window_seconds=60, clock=FakeClock())
    assert limiter.check("a").success is True
    assert limiter.check("a").success is False
    assert limiter.check("b").success is True


def test_sweep_removes_only_expired_records():
    clock = FakeClock()
    limiter = InMemoryFixedWindowLimiter(limit=5, window_seconds=60, clock=clock)
    limiter.check("old")
    clock.advance(45)
    limiter.check("new")
    clock.advance(20)

    assert limiter.sweep() == 1
    assert len(limiter) == 1


def test_retry_after_is_ceiling_of_seconds_until_reset():
    d = RateLimitDecision(False, 60, 0, reset=10_500)
    assert d.retry_after_seconds(now_ms=9_000) == 2
    assert d.retry_after_seconds(now_ms=20_000) == 0
    assert d.headers() == {
        "X-RateLimit-Limit": "60",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "10500",
    }


def test_failing_durable_backend_falls_back_with_correct_remaining():
    clock = FakeClock()
    primary = RedisSlidingWindowLimiter(BrokenRedis(), limit=3, window_seconds=60, clock=clock)
    limiter = TwoTierRateLimiter(
        primary=primary,
        fallback=InMemoryFixedWindowLimiter(limit=3, window_seconds=60, clock=clock),
    )

    remaining = [limiter.check("9.9.9.9").remaining for _ in range(3)]
    assert remaining == [2, 1, 0]

    blocked = limiter.check("9.9.9.9")
    assert blocked.success is False
    assert blocked.backend == "memory"
    assert limiter.durable_configured is True


class FakePipeline:
    def __init__(self, store: dict) -> None:
        self.store = store
        self.ops = []

    def zremrangebyscore(self, key, lo, hi):
        self.ops.append(("zrem_range", key, lo, hi))

    def zadd(self, key, mapping):
        self.ops.append(("zadd", key, mapping))

    def zcard(self, key):
        self.ops.append(("zcard", key))

    def zrange(self, key, start, end, withscores=False):
        self.ops.append(("zrange", key))

    def pexpire(self, key, ms):
        self.ops.append(("pexpire", key, ms))

    def execute(self):
        out = []
        for op in self.ops:
            key = op[1]
            members = self.store.setdefault(key, {})
            if op[0] == "zrem_range":
                dead = [m for m, s in members.items() if op[2] <= s <= op[3]]
                for m in dead:
                    del members[m]
                out.append(len(dead))
            elif op[0] == "zadd":
                members.update(op[2])
                out.append(1)
            elif op[0] == "zcard":
                out.append(len(members))
            elif op[0] == "zrange":
                ordered = sorted(members.items(), key=lambda kv: kv[1])
                out.append([(m.encode(), float(s)) for m, s in ordered[:1]])
            else:
                out.append(True)
        return out


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict = {}

    def pipeline(self, transaction: bool = True):
        return FakePipeline(self.store)

    def zrem(self, key, member):
        self.store.get(key, {}).pop(member, None)


def test_redis_sliding_window_counts_and_rejections_do_not_consume():
    clock = FakeClock()
    client = FakeRedis()
    limiter = RedisSlidingWindowLimiter(client, limit=2, window_seconds=60, clock=clock)

    first = limiter.check("x")
    clock.advance(1)
    second = limiter.check("x")
    third = limiter.check("x")

    assert (first.success, first.remaining) == (True, 1)
    assert (second.success, second.remaining) == (True, 0)
    assert third.success is False
    assert third.reset == first.reset
    assert len(client.store["ratelimit:public:x"]) == 2

    # Oldest entry leaves the window; one slot frees up.
    clock.advance(59.5)
    assert limiter.check("x").success is True


class FlakyCleanupRedis(FakeRedis):
    """Counting works; removing the rejected entry times out."""

    def zrem(self, key, member):
        raise redis.exceptions.ConnectionError("timeout while removing member")


def test_redis_rejection_stands_when_cleanup_fails():
    clock = FakeClock()
    client = FlakyCleanupRedis()
    now_ms = int(clock() * 1000)
    client.store["ratelimit:public:1.2.3.4"] = {
        f"seed-{i}": now_ms - 1000 for i in range(99)
    }
    limiter = TwoTierRateLimiter(
        primary=RedisSlidingWindowLimiter(client, limit=60, window_seconds=60, clock=clock),
        fallback=InMemoryFixedWindowLimiter(limit=60, window_seconds=60, clock=clock),
    )

    decision = limiter.check("1.2.3.4")

    assert decision.success is False
    assert decision.remaining == 0
    assert decision.backend == "redis"


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}, "203.0.113.7"),
        ({"X-Real-IP": "198.51.100.2"}, "198.51.100.2"),
        ({"X-Forwarded-For": " ", "X-Real-IP": "198.51.100.2"}, "198.51.100.2"),
        ({}, "anonymous"),
    ],
)
def test_client_identifier(headers, expected):
    assert client_identifier(headers) == expected


def test_build_rate_limiter_without_redis_is_memory_only():
    limiter = build_rate_limiter({"RATE_LIMIT_REQUESTS": 5, "RATE_LIMIT_WINDOW_SECONDS": 10})
    assert limiter.durable_configured is False
    assert limiter.check("a").limit == 5
