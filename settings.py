"""App settings.

Flask loads this module on startup via ``app.config.from_pyfile(...)``.
Static defaults only; secrets and deployment-specific values come from
``config.Config`` (environment variables).
"""

SETTINGS: dict[str, object] = {
    # Flask
    "SECRET_KEY": "dev-not-secret",
    # Logging
    "LOG_LEVEL": "INFO",
    "SLOW_REQUEST_MS": 250,
    # Observability
    "SLOW_OPERATION_MS": 1000,
    "METRICS_CAPACITY": 100,
    "ERRORS_CAPACITY": 50,
    # Public API admission control
    "RATE_LIMIT_REQUESTS": 60,
    "RATE_LIMIT_WINDOW_SECONDS": 60,
    "RATE_LIMIT_PREFIX": "ratelimit:public",
    "REDIS_TIMEOUT_SECONDS": 1.0,
    # Background sweeps
    "ENABLE_SWEEPS": True,
    "SWEEP_INTERVAL_SECONDS": 300,
    # Caching
    "HOLDINGS_CACHE_CONTROL": "public, s-maxage=300, stale-while-revalidate=600",
    "HEALTH_CACHE_CONTROL": "public, s-maxage=30, stale-while-revalidate=60",
    # Outbound HTTP (exchange filings index, price provider)
    "USER_AGENT": "Mozilla/5.0 (compatible; BitcoinTreasuries/1.0)",
    "HTTP_TIMEOUT_SECONDS": 30.0,
    # Admin-triggered scans fail fast instead of waiting for outbound budget.
    "INTERACTIVE_FETCH_MAX_WAIT_SECONDS": 5.0,
    "PRICE_API_URL": "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd",
    # Fan-out for batch jobs
    "DISCOVERY_WORKERS": 4,
    "MARKET_DATA_WORKERS": 4,
}

SECRET_KEY = SETTINGS["SECRET_KEY"]
LOG_LEVEL = SETTINGS["LOG_LEVEL"]
SLOW_REQUEST_MS = SETTINGS["SLOW_REQUEST_MS"]
SLOW_OPERATION_MS = SETTINGS["SLOW_OPERATION_MS"]
METRICS_CAPACITY = SETTINGS["METRICS_CAPACITY"]
ERRORS_CAPACITY = SETTINGS["ERRORS_CAPACITY"]
RATE_LIMIT_REQUESTS = SETTINGS["RATE_LIMIT_REQUESTS"]
RATE_LIMIT_WINDOW_SECONDS = SETTINGS["RATE_LIMIT_WINDOW_SECONDS"]
RATE_LIMIT_PREFIX = SETTINGS["RATE_LIMIT_PREFIX"]
REDIS_TIMEOUT_SECONDS = SETTINGS["REDIS_TIMEOUT_SECONDS"]
ENABLE_SWEEPS = SETTINGS["ENABLE_SWEEPS"]
SWEEP_INTERVAL_SECONDS = SETTINGS["SWEEP_INTERVAL_SECONDS"]
HOLDINGS_CACHE_CONTROL = SETTINGS["HOLDINGS_CACHE_CONTROL"]
HEALTH_CACHE_CONTROL = SETTINGS["HEALTH_CACHE_CONTROL"]
USER_AGENT = SETTINGS["USER_AGENT"]
HTTP_TIMEOUT_SECONDS = SETTINGS["HTTP_TIMEOUT_SECONDS"]
INTERACTIVE_FETCH_MAX_WAIT_SECONDS = SETTINGS["INTERACTIVE_FETCH_MAX_WAIT_SECONDS"]
PRICE_API_URL = SETTINGS["PRICE_API_URL"]
DISCOVERY_WORKERS = SETTINGS["DISCOVERY_WORKERS"]
MARKET_DATA_WORKERS = SETTINGS["MARKET_DATA_WORKERS"]
