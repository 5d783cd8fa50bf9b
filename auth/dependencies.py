"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token auth.

Authorization decisions read the access token's claims only. The role slug
and permission list are embedded when the token is minted, so no directory
lookup happens per request. A role change takes effect at the next refresh.

get_current_claims() raises HTTP 401 if the request has no valid bearer token.
require_role(*slugs) and require_permission(name) wrap it and raise HTTP 403.
get_session_metadata() collects the device details stored on new sessions.

Layer rule: no imports from api/, cache/, core/, or mail/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.errors import InvalidToken
from auth.models import SessionMetadata, TokenClaims


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid Authorization: Bearer access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Authorization header required.")
    try:
        return request.app.state.token_codec.validate(token.strip())
    except InvalidToken:
        raise _unauthorized("Invalid or expired token.") from None


def require_role(*slugs: str):
    """Dependency factory: the caller's role slug must be one of slugs.

        @router.get("/users", dependencies=[Depends(require_role("admin", "super_admin"))])
    """
    allowed = frozenset(slugs)

    def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient role."},
            )
        return claims

    return dependency


def require_permission(permission: str):
    """Dependency factory: the caller's permissions must allow permission ("*" allows all)."""

    def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if not claims.permissions.allows(permission):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Missing permission: {permission}."},
            )
        return claims

    return dependency


def get_session_metadata(request: Request) -> SessionMetadata:
    """Client IP, User-Agent, and X-Device-ID of the current request."""
    return SessionMetadata(
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("User-Agent", ""),
        device_id=request.headers.get("X-Device-ID", ""),
    )
