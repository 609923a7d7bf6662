from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine
import os


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Configure SQLite for concurrent request handlers reading while jobs write."""
    cursor = dbapi_connection.cursor()
    # Wait for locks instead of failing immediately.
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


DB_PATH = os.path.join(os.path.dirname(__file__), "data", "treasuries.db")
SQLALCHEMY_DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{DB_PATH}"

if SQLALCHEMY_DATABASE_URL.startswith("sqlite:///") and not os.getenv("DATABASE_URL"):
    os.makedirs(os.path.dirname(DB_PATH), exist_ok=True)

_is_sqlite = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30} if _is_sqlite else {},
    pool_pre_ping=True,
)

if _is_sqlite:
    from sqlalchemy import event

    event.listen(engine, "connect", _set_sqlite_pragmas)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
