"""Database utilities for the feed cache."""

from .session import (
    SessionFactory,
    build_engine,
    build_session_factory,
    create_schema,
    dispose_engine,
    get_engine,
    get_session_factory,
    session_scope,
)

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
