import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import db
from logging_utils import get_logger

logger = get_logger(__name__)


@dataclass
class JobState:
    running: bool = False
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
            "result": self.result,
        }


class DiscoveryScanJob:
    """All-entities discovery scan in a daemon thread; one run at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = JobState()
        self._thread: threading.Thread | None = None

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return self._state.as_dict()

    def start(self, *, tickers: List[str] | None = None) -> bool:
        """Returns True if a new scan was started, False if one is already running."""
        with self._lock:
            if self._state.running:
                return False
            self._state.running = True
            self._state.started_at = time.time()
            self._state.ended_at = None
            self._state.error = None
            self._state.result = None

        def _runner() -> None:
            # Imported here: the job pulls in the HTTP/HTML stack.
            from jobs.filing_discovery import run_scan

            try:
                db.Base.metadata.create_all(bind=db.engine)
                summary = run_scan(tickers=tickers)
                with self._lock:
                    self._state.result = summary.as_dict()
            except Exception:
                logger.exception("discovery scan job failed")
                with self._lock:
                    self._state.error = traceback.format_exc()
            finally:
                with self._lock:
                    self._state.running = False
                    self._state.ended_at = time.time()

        t = threading.Thread(target=_runner, name="discovery_scan", daemon=True)
        with self._lock:
            self._thread = t
        t.start()
        return True

    def join(self, timeout: float | None = None) -> None:
        with self._lock:
            t = self._thread
        if t is not None:
            t.join(timeout)


class PeriodicSweep:
    """Run `fn` every `interval_seconds` on a daemon thread until stopped.

    Failures are logged and the next tick still runs.
    """

    def __init__(self, name: str, fn: Callable[[], Any], *, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self.fn = fn
        self.interval_seconds = float(interval_seconds)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Any:
        try:
            out = self.fn()
        except Exception:
            logger.exception("sweep failed | name=%s", self.name)
            return None
        finally:
            self.runs += 1
        logger.debug("sweep ran | name=%s result=%s", self.name, out)
        return out

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> bool:
        if self.running:
            return False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"sweep:{self.name}", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def get_state(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
        }


# Module-level singleton shared by the admin routes.
discovery_scan_job = DiscoveryScanJob()
