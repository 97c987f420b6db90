from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import get_settings

settings = get_settings()


def _engine_options(url: str) -> dict[str, Any]:
    if not url.startswith("sqlite"):
        return {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # A single shared connection keeps the in-memory database alive across sessions
        options["poolclass"] = StaticPool
    return options


engine = create_engine(
    settings.database_url,
    echo=settings.database_echo,
    future=True,
    **_engine_options(settings.database_url),
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Context manager for short-lived database sessions.

    Realtime handlers open one of these per storage call instead of holding a
    session for the lifetime of a websocket.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
