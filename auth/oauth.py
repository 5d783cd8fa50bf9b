"""
auth/oauth.py -- Authlib OAuth provider registry and identity extraction.

build_oauth() registers only providers whose client ID and secret are both
configured. The /oauth routes use the returned registry for the redirect and
the code exchange, then hand the verified identity to AuthService.oauth_login.

Security notes:
  [H1] Email verification is mandatory. get_oauth_user_info() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       email from GitHub could belong to an attacker who added a victim's
       address without confirming it, and oauth_login links accounts by email.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/, cache/, core/, or mail/. Settings are passed
in by the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from authlib.integrations.starlette_client import OAuth

logger = logging.getLogger("gatehouse.auth.oauth")

_LABELS = {"github": "GitHub", "google": "Google"}


@dataclass(frozen=True)
class OAuthIdentity:
    """What a provider told us about the user, after verification checks."""

    provider: str
    subject: str
    email: str
    name: str


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------


def build_oauth(settings) -> OAuth:
    """Return an OAuth registry with every configured provider registered."""
    oauth = OAuth()

    # GitHub -- static endpoints (no OIDC discovery document)
    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    # Google -- OIDC discovery
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    return oauth


def get_enabled_providers(settings) -> list[dict]:
    """Return {"name", "label"} for every provider with credentials configured."""
    providers: list[dict] = []
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": _LABELS["google"]})
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": _LABELS["github"]})
    return providers


def welcome_email_providers(settings) -> frozenset[str]:
    """Providers whose first login should trigger a welcome email."""
    names = set()
    if settings.google_send_welcome_email:
        names.add("google")
    if settings.github_send_welcome_email:
        names.add("github")
    return frozenset(names)


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_user_info(client, provider: str, token: dict) -> OAuthIdentity:
    """Normalize a provider token response into an OAuthIdentity.

    Raises:
        ValueError: If a verified email cannot be confirmed, or the provider
            is unknown. Callers treat this as an authentication failure.
    """
    if provider == "github":
        return await _get_github_user_info(client, token)
    elif provider == "google":
        return _get_google_user_info(token)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _get_github_user_info(client, token: dict) -> OAuthIdentity:
    """GitHub needs two calls: /user for id and name, /user/emails for the email.

    [H1] Only the email where both primary=true AND verified=true is accepted.
    """
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    subject_id = str(profile["id"])

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()

    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break

    if not email:
        raise ValueError(
            "GitHub OAuth: no primary verified email found. "
            "The user must verify their email address on GitHub before logging in."
        )

    name = profile.get("name") or profile.get("login") or ""
    return OAuthIdentity(provider="github", subject=subject_id, email=email, name=name)


def _get_google_user_info(token: dict) -> OAuthIdentity:
    """[H1] The email claim is only accepted when email_verified is True."""
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject_id = userinfo.get("sub")
    if not email or not subject_id:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return OAuthIdentity(provider="google", subject=subject_id, email=email, name=userinfo.get("name") or "")
