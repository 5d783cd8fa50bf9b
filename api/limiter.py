"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

auth_rate_limit() is evaluated per request, so LOGIN_RATE_LIMIT can be changed
through the environment (the test suite raises it) without touching the
decorators.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def auth_rate_limit() -> str:
    """Limit applied to credential and code endpoints (login, register, verify, resend)."""
    return get_settings().login_rate_limit
