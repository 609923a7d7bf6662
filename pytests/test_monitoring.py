from __future__ import annotations

import pytest
from sqlalchemy.orm import sessionmaker

from api.services.monitoring import (
    DEGRADED,
    HEALTHY,
    NOT_CONFIGURED,
    UNHEALTHY,
    Monitor,
    RingBuffer,
    ServiceCheck,
    check_database,
    check_rate_limit_backend,
    overall_status,
)
from pytests.common import create_empty_sqlite_db


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _monitor(clock=None, memory=10.0, **kw) -> Monitor:
    return Monitor(clock=clock or FakeClock(), memory_probe=lambda: memory, **kw)


def test_ring_buffer_evicts_oldest_first():
    buf: RingBuffer[int] = RingBuffer(3)
    for i in range(4):
        buf.record(i)
    assert buf.query() == [1, 2, 3]
    assert buf.query(2) == [2, 3]
    assert len(buf) == 3


def test_metrics_capacity_plus_one_keeps_most_recent():
    m = _monitor(metrics_capacity=100)
    for i in range(101):
        m.track_performance(f"op{i}", 1.0)
    names = [x.name for x in m.recent_metrics(limit=100)]
    assert len(names) == 100
    assert names[0] == "op1"
    assert names[-1] == "op100"


def test_error_buffer_capacity():
    m = _monitor(errors_capacity=50)
    for i in range(51):
        m.log_error(RuntimeError(f"boom {i}"))
    errors = m.recent_errors(limit=50)
    assert len(errors) == 50
    assert errors[0].message == "boom 1"
    assert errors[-1].error_type == "RuntimeError"


def test_performance_stats():
    m = _monitor()
    assert m.performance_stats()["count"] == 0
    for d in (10.0, 20.0, 60.0):
        m.track_performance("op", d)
    stats = m.performance_stats()
    assert stats == {
        "count": 3,
        "avg_duration_ms": 30.0,
        "max_duration_ms": 60.0,
        "min_duration_ms": 10.0,
    }


def test_error_rate_counts_trailing_hour_only():
    clock = FakeClock()
    m = _monitor(clock=clock)
    assert m.error_rate() == 0.0

    m.log_error("stale")
    clock.now += 7200
    for _ in range(4):
        m.track_performance("op", 5.0)
    m.log_error("fresh")

    assert m.error_rate() == pytest.approx(0.25)


def test_alerts_thresholds():
    m = _monitor(memory=95.0)
    m.track_performance("slow", 2500.0)
    m.log_error("boom")

    levels = sorted(a["level"] for a in m.check_alerts())
    # error rate 100% (critical), average 2500ms (warning), memory 95% (critical)
    assert levels == ["critical", "critical", "warning"]


def test_no_alerts_when_quiet():
    m = _monitor(memory=20.0)
    m.track_performance("fast", 5.0)
    assert m.check_alerts() == []


def test_track_records_success_and_logs_failure():
    m = _monitor()
    with m.track("ok", ticker="X"):
        pass
    with pytest.raises(ValueError):
        with m.track("fails"):
            raise ValueError("bad")

    assert [x.name for x in m.recent_metrics()] == ["ok"]
    assert m.recent_metrics()[0].metadata == {"ticker": "X"}
    assert m.recent_errors()[0].context == {"operation": "fails"}


def test_clear_old_drops_entries_older_than_an_hour():
    clock = FakeClock()
    m = _monitor(clock=clock)
    m.track_performance("old", 1.0)
    m.log_error("old")
    clock.now += 3601
    m.track_performance("new", 1.0)

    assert m.clear_old() == 2
    assert [x.name for x in m.recent_metrics()] == ["new"]


def test_unhealthy_check_dominates():
    checks = [
        ServiceCheck("database", UNHEALTHY, "down"),
        ServiceCheck("redis", HEALTHY, "ok"),
        ServiceCheck("api", HEALTHY, "ok"),
    ]
    assert overall_status(checks, error_rate=0.0) == UNHEALTHY


def test_degraded_by_error_rate_or_check():
    healthy = [ServiceCheck("api", HEALTHY, "ok"), ServiceCheck("redis", NOT_CONFIGURED, "x")]
    assert overall_status(healthy, error_rate=0.0) == HEALTHY
    assert overall_status(healthy, error_rate=0.06) == DEGRADED
    assert overall_status(healthy + [ServiceCheck("db", DEGRADED, "slow")], 0.0) == DEGRADED


def test_check_database_healthy_and_unhealthy(tmp_path):
    _session, engine = create_empty_sqlite_db(tmp_path / "h.sqlite")
    ok = check_database(sessionmaker(bind=engine))
    assert ok.status == HEALTHY
    assert ok.latency_ms is not None

    def _broken():
        raise RuntimeError("db unreachable")

    bad = check_database(_broken)
    assert bad.status == UNHEALTHY
    assert "unreachable" in bad.message


def test_rate_limit_backend_check():
    assert check_rate_limit_backend(True).status == HEALTHY
    assert check_rate_limit_backend(False).status == NOT_CONFIGURED
