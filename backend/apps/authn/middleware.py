"""
Session helpers and the decorator for session-protected endpoints.

The session lives in a signed cookie (Django's signed_cookies backend),
so there is no server-side session store.
"""
import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable

from django.conf import settings
from django.http import HttpRequest, JsonResponse

logger = logging.getLogger(__name__)

SESSION_KEY = 'auth'


@dataclass
class SessionData:
    """Authentication state carried by the session cookie."""
    is_logged_in: bool = False
    email: str = ""
    expires_at: int = 0  # epoch milliseconds

    def to_dict(self) -> dict:
        return {
            'isLoggedIn': self.is_logged_in,
            'email': self.email,
            'expiresAt': self.expires_at,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


def get_session(request: HttpRequest) -> SessionData:
    """
    Read the authentication state from the request session.

    Missing, malformed or expired state reads as logged out.
    """
    data = request.session.get(SESSION_KEY)
    if not isinstance(data, dict):
        return SessionData()

    try:
        session = SessionData(
            is_logged_in=bool(data.get('isLoggedIn')),
            email=str(data.get('email', '')),
            expires_at=int(data.get('expiresAt', 0)),
        )
    except (TypeError, ValueError):
        return SessionData()

    if session.expires_at < _now_ms():
        return SessionData()

    return session


def set_session(request: HttpRequest, email: str) -> SessionData:
    """Log the user in for SESSION_COOKIE_AGE seconds."""
    # New cookie on login
    request.session.flush()
    session = SessionData(
        is_logged_in=True,
        email=email,
        expires_at=_now_ms() + settings.SESSION_COOKIE_AGE * 1000,
    )
    request.session[SESSION_KEY] = session.to_dict()
    return session


def clear_session(request: HttpRequest) -> None:
    """Log the user out and drop the cookie."""
    request.session.flush()


def session_required(view_func: Callable) -> Callable:
    """
    Decorator that requires a logged-in session.

    Attaches the session state to request.auth_session.

    Usage:
        @session_required
        def my_view(request):
            email = request.auth_session.email
            ...
    """
    @wraps(view_func)
    def wrapper(request: HttpRequest, *args, **kwargs):
        session = get_session(request)

        if not session.is_logged_in:
            logger.debug(f"Rejected unauthenticated request to {request.path}")
            return JsonResponse({'error': 'Unauthorized'}, status=401)

        request.auth_session = session
        return view_func(request, *args, **kwargs)

    return wrapper
