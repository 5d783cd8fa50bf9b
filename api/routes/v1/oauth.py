"""
api/routes/v1/oauth.py -- OAuth login endpoints (Google, GitHub).

Routes:
  GET /api/v1/oauth/providers             -- configured providers (public)
  GET /api/v1/oauth/{provider}            -- redirect to the provider's consent page
  GET /api/v1/oauth/{provider}/callback   -- code exchange; returns AuthResponse JSON

Flow:
  1. The redirect handler stores OAuth state in the Starlette session (authlib).
  2. The callback exchanges the code; authlib verifies state (CSRF).
  3. get_oauth_user_info() returns a verified identity or raises ValueError [H1].
  4. AuthService.oauth_login() links or creates the user and issues a session.

The route handlers are async because authlib's Starlette client is. The
service call is synchronous store work, so it runs in the thread pool.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from api.models import AuthResponse, OAuthProviderInfo
from auth.dependencies import get_session_metadata
from auth.models import SessionMetadata
from auth.oauth import get_enabled_providers, get_oauth_user_info

logger = logging.getLogger("gatehouse.api")

# Auth policy: all public. The provider's consent screen is the credential check.
router = APIRouter()


def _enabled(request: Request) -> set[str]:
    return {p["name"] for p in get_enabled_providers(request.app.state.settings)}


def _oauth_failed(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"code": "oauth_failed", "message": message})


def _expires_at_iso(token: dict) -> str | None:
    expires_at = token.get("expires_at")
    if not expires_at:
        return None
    return datetime.fromtimestamp(int(expires_at), tz=timezone.utc).isoformat(timespec="microseconds")


@router.get("/oauth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Providers with credentials configured. Empty list when none are."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


@router.get("/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list before any redirect
    is built, so a crafted name cannot point the flow anywhere else.
    """
    if provider not in _enabled(request):
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_not_found", "message": f"OAuth provider {provider!r} is not enabled."},
        )
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/oauth/{provider}/callback", response_model=AuthResponse, name="oauth_callback")
async def oauth_callback(
    request: Request,
    response: Response,
    provider: str,
    meta: SessionMetadata = Depends(get_session_metadata),
) -> AuthResponse:
    if provider not in _enabled(request):
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_not_found", "message": f"OAuth provider {provider!r} is not enabled."},
        )
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        raise _oauth_failed("OAuth token exchange failed.") from None

    try:
        identity = await get_oauth_user_info(client, provider, token)
    except ValueError:
        logger.warning("OAuth login rejected: unverified or missing email from %r", provider)
        raise _oauth_failed("The provider did not confirm a verified email address.") from None

    result = await run_in_threadpool(
        request.app.state.auth_service.oauth_login,
        identity.provider,
        identity.subject,
        identity.email,
        identity.name,
        meta,
        token.get("access_token", ""),
        token.get("refresh_token", "") or "",
        _expires_at_iso(token),
    )
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse.from_result(result)
