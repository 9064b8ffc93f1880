from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

SessionFactory = Callable[[], Session]


def create_sqlalchemy_session_factory(database_url: str | None = None, *, engine: Engine | None = None) -> SessionFactory:
    """Create a factory producing SQLAlchemy sessions for ``database_url`` (or an existing engine)."""

    if engine is None:
        if not database_url:
            raise ValueError("database_url or engine is required")
        engine = create_engine(database_url, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)

    def _factory() -> Session:
        return SessionLocal()

    return _factory
