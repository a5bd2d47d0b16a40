"""Engine and session helpers for the feed cache persistence layer."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings, get_settings
from .base import Base

SessionFactory = sessionmaker[Session]

_engine: Optional[Engine] = None
_session_factory: Optional[SessionFactory] = None


def build_engine(settings: Settings, database_url: Optional[str] = None) -> Engine:
    url = database_url or settings.database_url
    if not url:
        raise RuntimeError("FEEDCACHE_DATABASE_URL must be configured before using the database.")

    kwargs: dict[str, object] = {
        "echo": settings.database_echo,
        "future": True,
        "pool_pre_ping": True,
    }

    if url.startswith("sqlite"):
        # Scheduler threads and request threads share the engine.
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow

    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def create_schema(engine: Engine) -> None:
    """Create missing tables; migrations own the schema outside tests and local SQLite."""
    Base.metadata.create_all(engine)


def get_engine() -> Engine:
    global _engine, _session_factory
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings)
        _session_factory = build_session_factory(_engine)
        if settings.database_auto_create:
            create_schema(_engine)
    return _engine


def get_session_factory() -> SessionFactory:
    global _session_factory
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


@contextmanager
def session_scope(
    factory: Optional[SessionFactory] = None,
    *,
    commit: bool = True,
) -> Generator[Session, None, None]:
    session = (factory or get_session_factory())()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = [
    "SessionFactory",
    "build_engine",
    "build_session_factory",
    "create_schema",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
