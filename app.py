import math
import os
import time

from flask import Flask, g, jsonify, request

from api.blueprint import create_api_blueprint
from api.errors import OutboundThrottledError, RateLimitedError, TreasuryError
from api.jobs.manager import PeriodicSweep
from api.schemas.api_responses import fail
from api.services.monitoring import monitor
from api.services.rate_limiter import build_rate_limiter
from config import Config, configure_logging
import db
from logging_utils import configure_app_logging, get_logger


def init_db() -> None:
    """Initialize DB schema.

    Kept out of default startup path to minimize app spin-up time.
    """

    db.Base.metadata.create_all(bind=db.engine)


def _start_sweeps(app: Flask) -> None:
    interval = float(app.config.get("SWEEP_INTERVAL_SECONDS", 300))
    limiter = app.extensions["rate_limiter"]
    sweeps = {
        "rate_limiter": PeriodicSweep("rate_limiter", limiter.sweep, interval_seconds=interval),
        "metrics": PeriodicSweep("metrics", monitor.clear_old, interval_seconds=interval),
    }
    for sweep in sweeps.values():
        sweep.start()
    app.extensions["sweeps"] = sweeps


def create_app() -> Flask:
    app = Flask(__name__)

    # Static defaults, then environment-driven values.
    app.config.from_pyfile("settings.py")
    app.config.from_object(Config())

    # Configure unified app logging (UTC timestamps, per-file logs, daily rotation)
    configure_app_logging(app.config.get("LOG_LEVEL", "INFO"))
    logger = get_logger(__name__)
    configure_logging(app.logger, app.config.get("LOG_LEVEL", "INFO"))

    app.extensions["rate_limiter"] = build_rate_limiter(app.config)

    # --- slow request logging (default 250ms) ---
    # Set SLOW_REQUEST_MS=0 to disable the log line; durations are still recorded.
    slow_ms = int(os.getenv("SLOW_REQUEST_MS", str(app.config.get("SLOW_REQUEST_MS", 250))) or "0")

    @app.before_request
    def _start_timer():
        request.environ["_req_start_ns"] = time.perf_counter_ns()

    @app.after_request
    def _finish_request(resp):
        decision = g.get("rate_limit_decision")
        if decision is not None:
            resp.headers.update(decision.headers())

        start_ns = request.environ.get("_req_start_ns")
        if not start_ns:
            return resp

        elapsed_ms = (time.perf_counter_ns() - int(start_ns)) / 1_000_000.0
        monitor.track_performance(
            f"http {request.method} {request.path}",
            elapsed_ms,
            {"status": resp.status_code},
        )
        if slow_ms > 0 and elapsed_ms >= slow_ms:
            # Keep it compact and stable for grepping.
            logger.warning(
                "SLOW_REQUEST ms=%.1f status=%s method=%s path=%s query=%s",
                elapsed_ms,
                getattr(resp, "status_code", "?"),
                request.method,
                request.path,
                request.query_string.decode("utf-8", errors="replace"),
            )
        return resp

    app.register_blueprint(
        create_api_blueprint(enable_admin=app.config.get("ENABLE_ADMIN", True))
    )

    # Error handlers
    @app.errorhandler(TreasuryError)
    def treasury_error(err: TreasuryError):
        resp = jsonify(fail(err.message))
        resp.status_code = err.status_code

        if isinstance(err, RateLimitedError):
            resp.headers.update(err.decision.headers())
            resp.headers["Retry-After"] = str(err.decision.retry_after_seconds())
        elif isinstance(err, OutboundThrottledError):
            resp.headers["Retry-After"] = str(math.ceil(err.retry_after_seconds))
            logger.warning("outbound throttled | path=%s err=%s", request.path, err.message)
        elif err.status_code >= 500:
            logger.error("request failed | path=%s code=%s err=%s", request.path, err.code, err.message)
            monitor.log_error(err, {"path": request.path, "code": err.code})
        return resp

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify(fail("Not found")), 404

    @app.errorhandler(405)
    def method_not_allowed(_err):
        return jsonify(fail("Method not allowed")), 405

    @app.errorhandler(500)
    def server_error(err):
        logger.exception("Unhandled server error")
        monitor.log_error(getattr(err, "original_exception", None) or err, {"path": request.path})
        return jsonify(fail("Internal server error")), 500

    # Optional: initialize tables on startup only when explicitly requested.
    if os.getenv("INIT_DB_ON_STARTUP", "0") == "1":
        logger.info("INIT_DB_ON_STARTUP=1; initializing database schema")
        init_db()

    if app.config.get("ENABLE_SWEEPS") and not app.config.get("TESTING"):
        _start_sweeps(app)

    return app


# NOTE: Do not instantiate the Flask app at import time.
# Tests patch the DB engine/sessionmaker before calling create_app().
app: Flask | None = None


if __name__ == "__main__":
    app = create_app()
    get_logger(__name__).info("Starting Flask app")
    app.run(debug=True, use_reloader=False)
