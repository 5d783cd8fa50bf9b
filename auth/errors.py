"""
auth/errors.py -- Typed failure kinds raised by the auth core.

Every failure the orchestrator, stores, and services can report is one of the
classes below. Each carries the HTTP status and stable machine-readable code
the API layer needs to build the error envelope, so api/main.py maps the whole
hierarchy with a single exception handler.

Store-layer exceptions (SQLAlchemyError, RedisError) never leave auth/ raw:
they are wrapped in StoreFailure with the original exception kept on .cause
for logging.

translate_store_errors() is the decorator services put on their public methods to
do that wrapping in one place.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import functools
import logging

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("gatehouse.auth")


class AuthError(Exception):
    """Base class for every auth-core failure."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, cause: BaseException | None = None) -> None:
        self.message = message or self.message
        self.cause = cause
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown email and wrong password collapse into this one error."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password."


class EmailExists(AuthError):
    status_code = 400
    code = "email_exists"
    message = "Email already registered."


class AccountNotVerified(AuthError):
    status_code = 403
    code = "account_not_verified"
    message = "Account not verified. Please check your email for the verification code."


class AccountAlreadyVerified(AuthError):
    status_code = 400
    code = "already_verified"
    message = "Account is already verified."


class InvalidOrExpiredCode(AuthError):
    status_code = 400
    code = "invalid_code"
    message = "Invalid or expired code."


class InvalidToken(AuthError):
    """Raised by the token codec for any signature, expiry, or issuer failure."""

    status_code = 401
    code = "invalid_token"
    message = "Invalid token."


class InvalidOrExpiredToken(AuthError):
    status_code = 401
    code = "invalid_or_expired_token"
    message = "Invalid or expired refresh token."


class SessionNotFoundOrBlocked(AuthError):
    status_code = 401
    code = "session_not_found"
    message = "Session not found or blocked."


class SessionNotFound(SessionNotFoundOrBlocked):
    """Session management lookups scoped to the caller that match nothing."""

    status_code = 404
    message = "Session not found."


class UserNotFound(AuthError):
    status_code = 404
    code = "user_not_found"
    message = "User not found."


class RoleNotFound(AuthError):
    status_code = 404
    code = "role_not_found"
    message = "Role not found."


class RoleExists(AuthError):
    status_code = 400
    code = "role_exists"
    message = "Role with this slug or name already exists."


class RoleNotAssignable(AuthError):
    status_code = 403
    code = "role_not_assignable"
    message = "Only the user and admin roles can be assigned here."


class FeatureDisabled(AuthError):
    status_code = 400
    code = "feature_disabled"
    message = "This feature is not enabled."


class TokenGenerationFailed(AuthError):
    status_code = 500
    code = "token_generation_failed"
    message = "Failed to generate tokens."


class StoreFailure(AuthError):
    """Wraps a persistence or cache error. The original is kept on .cause."""

    status_code = 500
    code = "store_failure"
    message = "A storage error occurred."


def translate_store_errors(func):
    """Re-raise SQLAlchemy and Redis failures from func as StoreFailure.

    AuthError subclasses pass through untouched.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (SQLAlchemyError, RedisError) as exc:
            logger.error("%s failed: %s: %s", func.__qualname__, type(exc).__name__, exc)
            raise StoreFailure(cause=exc) from exc

    return wrapper
