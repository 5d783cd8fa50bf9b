"""
auth/tokens.py -- JWT signing and verification.

Security design decisions:
  JWT: python-jose. Tokens are signed with HS256 and carry user_id, email,
       role slug, permission list, issuer, iat, nbf, exp, and a random jti.
       The jti makes every token unique even when two pairs are minted for
       the same user in the same second; refresh tokens are stored with a
       UNIQUE constraint and must never collide.

  Algorithm confusion: decode() accepts only the HMAC family (HS256/384/512).
       A token whose header names "none", RS256, or anything else is rejected
       by jose before the signature is even checked.

  Configuration: TokenCodec receives secret, issuer, and lifetimes through
       its constructor. Nothing here reads settings at import time, so tests
       build codecs with whatever lifetimes they need (including negative
       ones to produce already-expired tokens).

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import logging
import time
import uuid

from jose import JWTError, jwt

from auth.errors import InvalidToken, TokenGenerationFailed
from auth.models import PermissionSet, TokenClaims, TokenPair

logger = logging.getLogger("gatehouse.auth")

_ALGORITHM = "HS256"
_ACCEPTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
_REQUIRED_CLAIMS = ("user_id", "email", "role", "exp")


class TokenCodec:
    """Mint and verify access/refresh token pairs.

    Usage:
        codec = TokenCodec(secret_key, issuer="gatehouse", access_ttl=3600, refresh_ttl=86400)
        pair = codec.issue_pair(user_id, email, "user", ["users.read"])
        claims = codec.validate(pair.access_token)
    """

    def __init__(self, secret_key: str, issuer: str, access_ttl: int, refresh_ttl: int) -> None:
        self._secret_key = secret_key
        self.issuer = issuer
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def _encode(self, user_id: str, email: str, role: str, permissions: list[str], ttl: int) -> str:
        now = int(time.time())
        payload = {
            "user_id": user_id,
            "email": email,
            "role": role,
            "permissions": permissions,
            "iss": self.issuer,
            "iat": now,
            "nbf": now,
            "exp": now + ttl,
            "jti": uuid.uuid4().hex,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Token signing failed for user_id=%s: %s", user_id, exc)
            raise TokenGenerationFailed(cause=exc) from exc

    def issue_pair(self, user_id: str, email: str, role: str, permissions: list[str] | PermissionSet) -> TokenPair:
        """Return an access and a refresh token carrying the same identity claims.

        The two differ only in exp (and jti). Lifetimes are independent.
        """
        perms = list(permissions)
        return TokenPair(
            access_token=self._encode(user_id, email, role, perms, self.access_ttl),
            refresh_token=self._encode(user_id, email, role, perms, self.refresh_ttl),
            expires_in=self.access_ttl,
        )

    def validate(self, token: str) -> TokenClaims:
        """Verify signature, algorithm, issuer, and time claims.

        Raises InvalidToken on any failure. Never returns partial claims.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=_ACCEPTED_ALGORITHMS,
                issuer=self.issuer,
            )
        except JWTError as exc:
            raise InvalidToken(cause=exc) from exc
        if any(name not in payload for name in _REQUIRED_CLAIMS):
            raise InvalidToken("Token is missing required claims.")
        return TokenClaims(
            user_id=str(payload["user_id"]),
            email=payload["email"],
            role=payload["role"],
            permissions=PermissionSet(payload.get("permissions") or []),
            issuer=payload.get("iss", ""),
            issued_at=int(payload.get("iat", 0)),
            not_before=int(payload.get("nbf", 0)),
            expires_at=int(payload["exp"]),
            jti=payload.get("jti", ""),
        )
