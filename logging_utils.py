"""Application logging utilities.

Goals:
- Single, shared app logger used everywhere
- Logs written to per-module files under ./logs/
- UTC timestamp at start of each log line
- Daily log rotation

Call `get_logger(__name__)` from any module to get a child logger.
"""

from __future__ import annotations

import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler


class _UTCFormatter(logging.Formatter):
    """Formatter that forces UTC timestamps."""

    converter = staticmethod(time.gmtime)


_APP_LOGGER_NAME = "btc_treasuries"

_FORMAT = "%(asctime)sZ %(levelname)s pid=%(process)d %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def _logs_dir() -> str:
    return os.getenv("LOG_DIR") or os.path.join(os.path.dirname(__file__), "logs")


def _sanitize_filename(name: str) -> str:
    # "api.services.monitoring" -> "api_services_monitoring"
    name = (name or "app").strip() or "app"
    return "".join(ch if (ch.isalnum() or ch in {"-", "_"}) else "_" for ch in name)


def _file_handler(path: str, level: int) -> TimedRotatingFileHandler:
    fh = TimedRotatingFileHandler(
        path,
        when="midnight",
        interval=1,
        backupCount=14,
        utc=True,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(_UTCFormatter(fmt=_FORMAT, datefmt=_DATEFMT))
    return fh


def configure_app_logging(level_name: str = "INFO") -> logging.Logger:
    """Configure and return the root application logger.

    Safe to call multiple times.
    """

    level = getattr(logging, (level_name or "INFO").upper(), logging.INFO)
    app_logger = logging.getLogger(_APP_LOGGER_NAME)
    app_logger.setLevel(level)

    if getattr(app_logger, "_configured", False):
        return app_logger

    os.makedirs(_logs_dir(), exist_ok=True)

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(_UTCFormatter(fmt=_FORMAT, datefmt=_DATEFMT))

    app_logger.addHandler(sh)
    app_logger.addHandler(_file_handler(os.path.join(_logs_dir(), "app.log"), level))

    # Do not propagate to the global root logger (prevents double logging).
    app_logger.propagate = False

    app_logger._configured = True  # type: ignore[attr-defined]
    return app_logger


def get_logger(module_name: str | None = None) -> logging.Logger:
    """Get a module-specific logger that writes to its own log file.

    Child loggers propagate to the app logger, so console output is shared.
    """

    base = configure_app_logging(os.getenv("LOG_LEVEL", "INFO"))

    child_name = module_name or "app"
    logger = logging.getLogger(f"{_APP_LOGGER_NAME}.{child_name}")

    if not getattr(logger, "_file_configured", False):
        logger.setLevel(base.level)
        file_name = _sanitize_filename(child_name) + ".log"
        logger.addHandler(_file_handler(os.path.join(_logs_dir(), file_name), base.level))
        logger._file_configured = True  # type: ignore[attr-defined]

    return logger
