"""Middleware for the SchemaLens API."""

from app.middleware.session import (
    SESSION_COOKIE_NAME,
    SessionMiddleware,
    dump_session,
    get_session,
    load_session,
    set_session,
)

__all__ = [
    "SESSION_COOKIE_NAME",
    "SessionMiddleware",
    "dump_session",
    "get_session",
    "load_session",
    "set_session",
]
