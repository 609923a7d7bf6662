from __future__ import annotations

from dataclasses import dataclass
from typing import Generator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from api.services.monitoring import monitor
from pytests.common import create_empty_sqlite_db, patch_app_db

ADMIN_SECRET = "test-secret"


@dataclass(frozen=True)
class DbFixture:
    session: Session
    engine: Engine
    session_factory: sessionmaker


@pytest.fixture(autouse=True)
def _hermetic_env(tmp_path, monkeypatch):
    """No background threads, no real DB init, logs under tmp, clean buffers."""

    monkeypatch.setenv("ENABLE_SWEEPS", "0")
    monkeypatch.setenv("INIT_DB_ON_STARTUP", "0")
    monkeypatch.setenv("CRON_SECRET", ADMIN_SECRET)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("QUOTE_API_URL", raising=False)
    monitor.reset()
    yield
    monitor.reset()


@pytest.fixture()
def test_db(tmp_path, monkeypatch) -> Generator[DbFixture, None, None]:
    """Temp SQLite DB with all tables; the app's `db` module points at it."""

    session, engine = create_empty_sqlite_db(tmp_path / "test.sqlite")
    factory = patch_app_db(monkeypatch, engine)
    try:
        yield DbFixture(session=session, engine=engine, session_factory=factory)
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def app(test_db):
    from app import create_app

    app = create_app()
    app.config.update(TESTING=True)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_SECRET}"}
