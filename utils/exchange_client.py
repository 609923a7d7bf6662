"""HTTP GET for exchange filings indexes.

Each index host gets its own hourly request budget (taken from the venue that
owns the host). Background scans wait for budget; interactive callers pass
`max_wait_seconds` and get OutboundThrottledError instead of a parked thread.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from urllib.parse import urlsplit

import requests

from api.errors import OutboundThrottledError, UpstreamFailureError
from logging_utils import get_logger
from settings import SETTINGS
from utils.venues import VENUES

logger = get_logger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
DEFAULT_HOURLY_BUDGET = 100


@dataclass(frozen=True)
class ExchangeResponse:
    url: str
    status_code: int
    content: bytes
    content_type: str | None

    def text(self, encoding: str | None = None) -> str:
        return self.content.decode(encoding or "utf-8", errors="replace")


class HostThrottle:
    """Request budget for one upstream host over a trailing window."""

    def __init__(
        self,
        *,
        max_requests: int = DEFAULT_HOURLY_BUDGET,
        window_seconds: float = 3600.0,
        clock=time.monotonic,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.max_requests = int(max_requests)
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._sent: deque[float] = deque()

    def try_acquire(self) -> float:
        """Take a slot if one is free. Returns 0.0, or the seconds until one frees up."""
        now = self._clock()
        with self._lock:
            horizon = now - self.window_seconds
            while self._sent and self._sent[0] <= horizon:
                self._sent.popleft()
            if len(self._sent) >= self.max_requests:
                return max(self._sent[0] + self.window_seconds - now, 0.001)
            self._sent.append(now)
            return 0.0

    def acquire(self, *, max_wait_seconds: float | None = None) -> None:
        """Wait for a slot; raise OutboundThrottledError if the wait would exceed the cap."""
        while True:
            wait = self.try_acquire()
            if not wait:
                return
            if max_wait_seconds is not None and wait > max_wait_seconds:
                raise OutboundThrottledError(
                    f"outbound budget exhausted; retry in {wait:.0f}s",
                    retry_after_seconds=wait,
                )
            time.sleep(wait)


_throttles: dict[str, HostThrottle] = {}
_throttles_lock = threading.Lock()


def _hourly_budget_for(host: str) -> int:
    for venue in VENUES.values():
        if venue.index_origin and urlsplit(venue.index_origin).netloc == host:
            return venue.index_hourly_budget
    return DEFAULT_HOURLY_BUDGET


def throttle_for(url: str) -> HostThrottle:
    """The shared throttle for the host serving `url`."""
    host = urlsplit(url).netloc.lower()
    with _throttles_lock:
        throttle = _throttles.get(host)
        if throttle is None:
            throttle = HostThrottle(max_requests=_hourly_budget_for(host))
            _throttles[host] = throttle
        return throttle


def _retry_after(resp) -> float | None:
    value = (resp.headers.get("Retry-After") or "").strip()
    return float(value) if value.isdigit() else None


def _backoff_seconds(attempt: int) -> float:
    return min(2.0 ** (attempt - 1), 8.0)


def _request_headers(url: str, extra: dict[str, str] | None) -> dict[str, str]:
    parts = urlsplit(url)
    out = {
        "User-Agent": str(SETTINGS["USER_AGENT"]),
        "Accept": "text/html,application/xhtml+xml",
        "Referer": f"{parts.scheme}://{parts.netloc}/",
    }
    out.update(extra or {})
    return out


def fetch(
    url: str,
    *,
    session: requests.Session | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float | None = None,
    throttle: HostThrottle | None = None,
    max_attempts: int = 3,
    max_wait_seconds: float | None = None,
) -> ExchangeResponse:
    """GET `url` within the host's budget.

    Connection errors and RETRYABLE_STATUS are retried with backoff (or the
    server's Retry-After); anything else non-2xx is an UpstreamFailureError.
    Every attempt, retries included, spends budget.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be >= 1")

    http = session or requests.Session()
    budget = throttle or throttle_for(url)
    timeout = float(timeout_seconds or SETTINGS["HTTP_TIMEOUT_SECONDS"])
    req_headers = _request_headers(url, headers)

    failure = "no attempt made"
    for attempt in range(1, max_attempts + 1):
        budget.acquire(max_wait_seconds=max_wait_seconds)
        delay: float | None = None
        try:
            resp = http.get(url, headers=req_headers, timeout=timeout)
        except requests.RequestException as e:
            failure = f"request error: {e}"
        else:
            if 200 <= resp.status_code < 300:
                return ExchangeResponse(
                    url=url,
                    status_code=resp.status_code,
                    content=resp.content,
                    content_type=resp.headers.get("Content-Type"),
                )
            failure = f"status={resp.status_code}"
            if resp.status_code not in RETRYABLE_STATUS:
                break
            delay = _retry_after(resp)

        logger.warning(
            "exchange fetch attempt failed | url=%s attempt=%s/%s %s",
            url,
            attempt,
            max_attempts,
            failure,
        )
        if attempt < max_attempts:
            time.sleep(delay if delay is not None else _backoff_seconds(attempt))

    raise UpstreamFailureError(f"exchange request failed {failure} url={url}")
