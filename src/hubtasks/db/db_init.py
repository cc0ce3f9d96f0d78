"""Database initialization helpers."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db_models import Base


def create_session_factory(database_url: str) -> tuple[Engine, sessionmaker[Session]]:
    """Create the engine and a session factory bound to it."""
    engine = create_engine(database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, session_factory


def init_db(engine: Engine) -> None:
    """Create the job history table if it does not exist."""
    Base.metadata.create_all(engine)
