"""Error taxonomy shared by routes, services and jobs.

Routes raise these; `create_app` registers a single handler that renders
`{"error": message}` with the matching status code.
"""

from __future__ import annotations

from typing import Any


class TreasuryError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotConfiguredError(TreasuryError):
    """Required external configuration is absent."""

    code = "not_configured"


class UnauthorizedError(TreasuryError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(TreasuryError):
    status_code = 404
    code = "not_found"


class NoPriceDataError(TreasuryError):
    """No price snapshot exists. Fatal to valuation; never defaulted to zero."""

    code = "no_price_data"


class UpstreamFailureError(TreasuryError):
    status_code = 502
    code = "upstream_failure"


class OutboundThrottledError(UpstreamFailureError):
    """Our own per-host budget for an upstream is spent; nothing was sent."""

    status_code = 503
    code = "outbound_throttled"

    def __init__(self, message: str, *, retry_after_seconds: float):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RequestValidationError(TreasuryError):
    status_code = 400
    code = "validation_error"


class RateLimitedError(TreasuryError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, decision: Any, message: str = "Too many requests"):
        super().__init__(message)
        self.decision = decision
