# File: src/nexustrack/infrastructure/db/uow.py
# Unit of Work: every service opens one `session_scope()` per logical step
# (load channels, save a watermark, track an item) and never holds a session
# across an `await` on the network.

import logging
from contextlib import contextmanager
from typing import Callable, ContextManager, Generator

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .base import engine as default_engine, SessionLocal
from .models import Base

log = logging.getLogger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


def create_tables(bind: Engine = default_engine):
    """Creates all tables defined in models if they do not exist."""
    log.info("Creating database tables if they do not exist...")
    try:
        Base.metadata.create_all(bind)
        log.info("Database tables checked/created successfully.")
    except Exception as e:
        log.critical(f"Failed to create database tables: {e}", exc_info=True)
        raise


def make_session_scope(factory: sessionmaker) -> SessionScope:
    """Builds a `session_scope` bound to a specific session factory."""

    @contextmanager
    def scope() -> Generator[Session, None, None]:
        session = factory()
        log.debug(f"Session {id(session)} opened.")
        try:
            yield session
            session.commit()
            log.debug(f"Session {id(session)} committed.")
        except Exception as e:
            log.error(f"Session {id(session)} rollback due to exception: {e}")
            session.rollback()
            raise
        finally:
            session.close()
            log.debug(f"Session {id(session)} closed.")

    return scope


# --- Unit of Work (UoW) Context Manager ---
session_scope: SessionScope = make_session_scope(SessionLocal)
