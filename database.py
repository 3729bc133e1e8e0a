"""Engine and session setup for the résumé store.

``DATABASE_URL`` wins when set; ``DB_HOST`` and friends build a PostgreSQL URL
for deployed environments; otherwise a local SQLite file is used.
"""
import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

LOCAL_SQLITE_URL = "sqlite:///./resume_optimizer.db"


def _build_database_url() -> str:
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url

    host = os.getenv("DB_HOST")
    if host:
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "")
        port = os.getenv("DB_PORT", "5432")
        name = os.getenv("DB_NAME", "postgres")
        return f"postgresql://{user}:{password}@{host}:{port}/{name}"

    return LOCAL_SQLITE_URL


SQLALCHEMY_DATABASE_URL = _build_database_url()
IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    # Request handlers and the async pipeline share connections across threads
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 15},
        pool_pre_ping=True,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL, pool_pre_ping=True)


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    """WAL for concurrent readers during a document swap; FK checks for ownership rows."""
    cursor = dbapi_connection.cursor()
    try:
        for pragma in (
            "PRAGMA journal_mode=WAL",
            "PRAGMA busy_timeout=5000",
            "PRAGMA synchronous=NORMAL",
            "PRAGMA foreign_keys=ON",
        ):
            cursor.execute(pragma)
    finally:
        cursor.close()


if IS_SQLITE:
    event.listen(engine, "connect", _enable_sqlite_pragmas)


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_db_and_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    """Request-scoped session; callers commit, this only closes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
