"""In-process observability: bounded metric/error buffers, alerts, health checks.

The buffers are process-wide (one `monitor` per process) and guarded by a
lock so request threads can record while the health endpoint reads derived
statistics. Statistics are computed on demand from whatever the buffers
currently hold, not from a full history.
"""

from __future__ import annotations

import threading
import time
import traceback
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Generic, Iterator, List, Optional, TypeVar

import psutil
from sqlalchemy import select

from logging_utils import get_logger
from models.entities import Entity

logger = get_logger(__name__)

T = TypeVar("T")

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"
NOT_CONFIGURED = "not_configured"

ONE_HOUR_SECONDS = 3600.0


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class PerformanceMetric:
    name: str
    duration_ms: float
    timestamp: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = _iso(self.timestamp)
        return d


@dataclass(frozen=True)
class ErrorLog:
    message: str
    timestamp: float
    error_type: str | None = None
    stack: str | None = None
    context: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = _iso(self.timestamp)
        return d


class RingBuffer(Generic[T]):
    """Fixed-capacity FIFO; appending to a full buffer evicts the oldest entry."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = int(capacity)
        self._items: Deque[T] = deque(maxlen=self.capacity)
        self._lock = threading.Lock()

    def record(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def query(self, limit: int | None = None) -> List[T]:
        """Oldest-first copy of the contents (the newest `limit` if given)."""
        with self._lock:
            items = list(self._items)
        if limit is not None:
            items = items[-max(0, int(limit)):] if limit > 0 else []
        return items

    def prune(self, keep: Callable[[T], bool]) -> int:
        with self._lock:
            before = len(self._items)
            kept = [i for i in self._items if keep(i)]
            self._items.clear()
            self._items.extend(kept)
            return before - len(kept)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def _process_memory_percent() -> float:
    return float(psutil.Process().memory_percent())


class Monitor:
    def __init__(
        self,
        *,
        metrics_capacity: int = 100,
        errors_capacity: int = 50,
        slow_threshold_ms: float = 1000.0,
        clock: Callable[[], float] = time.time,
        memory_probe: Callable[[], float] = _process_memory_percent,
    ) -> None:
        self.metrics: RingBuffer[PerformanceMetric] = RingBuffer(metrics_capacity)
        self.errors: RingBuffer[ErrorLog] = RingBuffer(errors_capacity)
        self.slow_threshold_ms = float(slow_threshold_ms)
        self._clock = clock
        self._memory_probe = memory_probe
        self.started_at = clock()

    def track_performance(
        self, name: str, duration_ms: float, metadata: Optional[Dict[str, Any]] = None
    ) -> PerformanceMetric:
        metric = PerformanceMetric(
            name=name,
            duration_ms=float(duration_ms),
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
        )
        self.metrics.record(metric)

        if metric.duration_ms > self.slow_threshold_ms:
            logger.warning(
                "SLOW_OPERATION name=%s ms=%.1f metadata=%s",
                name,
                metric.duration_ms,
                metric.metadata,
            )
        return metric

    def log_error(
        self, error: BaseException | str, context: Optional[Dict[str, Any]] = None
    ) -> ErrorLog:
        if isinstance(error, BaseException):
            entry = ErrorLog(
                message=str(error) or type(error).__name__,
                timestamp=self._clock(),
                error_type=type(error).__name__,
                stack="".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
                if error.__traceback__ is not None
                else None,
                context=dict(context or {}),
            )
        else:
            entry = ErrorLog(
                message=str(error), timestamp=self._clock(), context=dict(context or {})
            )
        self.errors.record(entry)
        logger.error("error logged | message=%s context=%s", entry.message, entry.context)
        return entry

    @contextmanager
    def track(self, name: str, **metadata: Any) -> Iterator[None]:
        """Time the block; on failure log the error and re-raise."""
        start = time.perf_counter()
        try:
            yield
        except Exception as e:
            self.log_error(e, {"operation": name, **metadata})
            raise
        self.track_performance(name, (time.perf_counter() - start) * 1000.0, metadata)

    def recent_metrics(self, limit: int = 20) -> List[PerformanceMetric]:
        return self.metrics.query(limit)

    def recent_errors(self, limit: int = 20) -> List[ErrorLog]:
        return self.errors.query(limit)

    def performance_stats(self) -> Dict[str, Any]:
        durations = [m.duration_ms for m in self.metrics.query()]
        if not durations:
            return {"count": 0, "avg_duration_ms": 0.0, "max_duration_ms": 0.0, "min_duration_ms": 0.0}
        return {
            "count": len(durations),
            "avg_duration_ms": round(sum(durations) / len(durations), 2),
            "max_duration_ms": max(durations),
            "min_duration_ms": min(durations),
        }

    def error_rate(self) -> float:
        """Errors per recorded operation over the trailing hour (0 without metrics)."""
        cutoff = self._clock() - ONE_HOUR_SECONDS
        recent_metrics = sum(1 for m in self.metrics.query() if m.timestamp > cutoff)
        if recent_metrics == 0:
            return 0.0
        recent_errors = sum(1 for e in self.errors.query() if e.timestamp > cutoff)
        return recent_errors / recent_metrics

    def memory_usage_percent(self) -> float:
        return self._memory_probe()

    def check_alerts(self) -> List[Dict[str, Any]]:
        alerts: List[Dict[str, Any]] = []
        now = _iso(self._clock())

        rate = self.error_rate()
        if rate > 0.1:
            alerts.append(
                {"level": "critical", "message": f"High error rate: {rate * 100:.1f}%", "timestamp": now}
            )

        avg = self.performance_stats()["avg_duration_ms"]
        if avg > 2000:
            alerts.append(
                {"level": "warning", "message": f"Slow average response time: {avg}ms", "timestamp": now}
            )

        memory = self.memory_usage_percent()
        if memory > 90:
            alerts.append(
                {"level": "critical", "message": f"High memory usage: {memory:.1f}%", "timestamp": now}
            )

        return alerts

    def clear_old(self, older_than_seconds: float = ONE_HOUR_SECONDS) -> int:
        """Drop buffer entries older than the cutoff. Returns how many were removed."""
        cutoff = self._clock() - older_than_seconds
        removed = self.metrics.prune(lambda m: m.timestamp >= cutoff)
        removed += self.errors.prune(lambda e: e.timestamp >= cutoff)
        return removed

    def system_snapshot(self) -> Dict[str, Any]:
        proc = psutil.Process()
        return {
            "timestamp": _iso(self._clock()),
            "uptime_seconds": round(self._clock() - self.started_at, 1),
            "memory": {
                "rss_mb": round(proc.memory_info().rss / 1024 / 1024, 1),
                "percentage": round(self.memory_usage_percent(), 1),
            },
            "metrics": {
                "recent_errors": len(self.errors),
                "performance_stats": self.performance_stats(),
            },
        }

    def reset(self) -> None:
        self.metrics.clear()
        self.errors.clear()


@dataclass(frozen=True)
class ServiceCheck:
    service: str
    status: str
    message: str
    latency_ms: float | None = None

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if self.latency_ms is None:
            d.pop("latency_ms")
        return d


def check_database(session_factory: Callable[[], Any]) -> ServiceCheck:
    """Trivial read against the primary datastore; latency in ms."""
    start = time.perf_counter()
    session = None
    try:
        session = session_factory()
        session.execute(select(Entity.id).limit(1)).first()
        latency = round((time.perf_counter() - start) * 1000.0, 2)
        return ServiceCheck("database", HEALTHY, "Connected", latency)
    except Exception as e:
        latency = round((time.perf_counter() - start) * 1000.0, 2)
        logger.error("database health check failed | err=%s", e)
        return ServiceCheck("database", UNHEALTHY, str(e) or type(e).__name__, latency)
    finally:
        if session is not None:
            session.close()


def check_rate_limit_backend(configured: bool) -> ServiceCheck:
    if configured:
        return ServiceCheck("redis", HEALTHY, "Configured and available")
    return ServiceCheck("redis", NOT_CONFIGURED, "Using in-memory fallback")


def check_self() -> ServiceCheck:
    return ServiceCheck("api", HEALTHY, "Operational")


def perform_health_checks(
    session_factory: Callable[[], Any], *, rate_limit_backend_configured: bool
) -> List[ServiceCheck]:
    return [
        check_database(session_factory),
        check_rate_limit_backend(rate_limit_backend_configured),
        check_self(),
    ]


def overall_status(checks: List[ServiceCheck], error_rate: float) -> str:
    """Any unhealthy check wins; then degraded checks or error rate above 5%."""
    statuses = {c.status for c in checks}
    if UNHEALTHY in statuses:
        return UNHEALTHY
    if DEGRADED in statuses or error_rate > 0.05:
        return DEGRADED
    return HEALTHY


# Process-wide instance shared by the API and batch jobs.
monitor = Monitor()
