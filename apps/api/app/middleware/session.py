"""Signed cookie sessions.

Reviewers are identified by the ``user_id`` stored in the session. The cookie
is issued by whatever front end sits in front of the API; this middleware
only verifies and exposes it, re-signing when a handler changes the data.
"""

import json
import logging
from typing import Any

from fastapi import Request, Response
from itsdangerous import BadSignature, TimestampSigner
from schemalens_core import get_settings
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "schemalens_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


def get_signer() -> TimestampSigner:
    return TimestampSigner(get_settings().session_secret)


def load_session(cookie: str | None) -> dict[str, Any]:
    """Decode a session cookie, returning an empty session when invalid or expired."""
    if not cookie:
        return {}
    try:
        unsigned = get_signer().unsign(cookie, max_age=SESSION_MAX_AGE)
        data = json.loads(unsigned.decode())
    except (BadSignature, json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("Discarding invalid session cookie")
        return {}
    return data if isinstance(data, dict) else {}


def dump_session(data: dict[str, Any]) -> str:
    return get_signer().sign(json.dumps(data).encode()).decode()


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads the session into ``request.state`` and writes it back when modified."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.session = load_session(request.cookies.get(SESSION_COOKIE_NAME))
        request.state.session_modified = False

        response = await call_next(request)

        if getattr(request.state, "session_modified", False):
            response.set_cookie(
                SESSION_COOKIE_NAME,
                dump_session(request.state.session),
                max_age=SESSION_MAX_AGE,
                httponly=True,
                secure=not get_settings().debug,
                samesite="lax",
            )

        return response


def get_session(request: Request) -> dict[str, Any]:
    """Get the current session from request."""
    return getattr(request.state, "session", {})


def set_session(request: Request, data: dict[str, Any]) -> None:
    """Replace session data and mark it for re-signing."""
    request.state.session = data
    request.state.session_modified = True
