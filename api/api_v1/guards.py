"""Request guards shared by the v1 routes: admission control and admin auth."""

from __future__ import annotations

import hmac

from flask import current_app, g, request

from api.errors import NotConfiguredError, RateLimitedError, UnauthorizedError
from api.services.rate_limiter import (
    RateLimitDecision,
    TwoTierRateLimiter,
    build_rate_limiter,
    client_identifier,
)


def get_rate_limiter() -> TwoTierRateLimiter:
    """The app's limiter, built on first use from app config."""
    limiter = current_app.extensions.get("rate_limiter")
    if limiter is None:
        limiter = build_rate_limiter(current_app.config)
        current_app.extensions["rate_limiter"] = limiter
    return limiter


def admit() -> RateLimitDecision:
    """Admission check for the calling client.

    The decision is kept on `g` so the response hook can attach headers.
    Raises RateLimitedError on rejection.
    """
    decision = get_rate_limiter().check(client_identifier(request.headers))
    g.rate_limit_decision = decision
    if not decision.success:
        raise RateLimitedError(decision)
    return decision


def require_admin() -> None:
    """Header must be exactly `Bearer <secret>`; no case folding, no trimming."""
    secret = current_app.config.get("ADMIN_SECRET")
    if not secret:
        raise NotConfiguredError("Admin secret is not configured")

    header = request.headers.get("Authorization") or ""
    scheme, sep, token = header.partition(" ")
    if scheme != "Bearer" or not sep or not token:
        raise UnauthorizedError("Unauthorized")
    if not hmac.compare_digest(token.encode("utf-8"), str(secret).encode("utf-8")):
        raise UnauthorizedError("Unauthorized")
