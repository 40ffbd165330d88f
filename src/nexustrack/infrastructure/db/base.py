# src/nexustrack/infrastructure/db/base.py
"""
Database engine setup and session management.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from nexustrack.config import settings


def build_engine(url: str, **kwargs) -> Engine:
    """
    Creates an engine for `url`. SQLite needs `check_same_thread=False` (the
    web app and the poller share it) and foreign keys switched on so
    `ON DELETE CASCADE` on subscribed items actually fires.
    """
    is_sqlite = url.startswith("sqlite")
    engine = create_engine(
        url,
        pool_pre_ping=not is_sqlite,
        connect_args={"check_same_thread": False} if is_sqlite else {},
        **kwargs,
    )
    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return engine


# --- Database Engine Creation ---
engine = build_engine(settings.DATABASE_URL)

# --- Session Management ---
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

