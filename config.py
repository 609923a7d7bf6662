import logging
import os


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_str(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v.strip()


class Config:
    """Environment-driven configuration, layered over the defaults in settings.py."""

    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-not-secret")

        # Shared secret for administrative triggers (cron jobs, manual scans).
        self.ADMIN_SECRET = _env_str("CRON_SECRET")

        # Read by db.py at import; kept here so it shows up in app.config.
        self.DATABASE_URL = _env_str("DATABASE_URL")

        # Durable rate-limit backend. Unset -> in-memory fallback only.
        self.REDIS_URL = _env_str("REDIS_URL")

        # Opaque third-party providers.
        self.QUOTE_API_URL = _env_str("QUOTE_API_URL")
        price_url = _env_str("PRICE_API_URL")
        if price_url:
            self.PRICE_API_URL = price_url

        self.ENABLE_SWEEPS: bool = _env_bool("ENABLE_SWEEPS", True)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(app_logger: logging.Logger, level_name: str) -> None:
    """Route Flask's own logger through the same format as the app logger."""

    level = getattr(logging, level_name, logging.INFO)

    if app_logger.handlers:
        app_logger.setLevel(level)
        return

    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)

    app_logger.addHandler(handler)
    app_logger.setLevel(level)
