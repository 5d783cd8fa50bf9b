"""
api/routes/v1/auth.py -- Authentication and session management REST endpoints.

Routes:
  POST   /api/v1/auth/register              -- create account (201)
  POST   /api/v1/auth/login                 -- password login; tokens or 2FA challenge
  POST   /api/v1/auth/refresh               -- rotate refresh token, new pair
  POST   /api/v1/auth/logout                -- delete the session of a refresh token
  POST   /api/v1/auth/verify-email          -- confirm activation code
  POST   /api/v1/auth/verify-2fa            -- confirm 2FA code; tokens
  POST   /api/v1/auth/resend-verification   -- new activation code
  POST   /api/v1/auth/resend-2fa            -- new 2FA code
  GET    /api/v1/auth/sessions              -- caller's sessions (bearer)
  DELETE /api/v1/auth/sessions/{id}         -- delete one of caller's sessions (bearer)
  PATCH  /api/v1/auth/sessions/{id}/block   -- block one of caller's sessions (bearer)

Every handler is a thin adapter: decode the body, collect session metadata,
call one AuthService method, shape the result. AuthError subclasses raised by
the service are turned into the error envelope by api/main.py.

Security:
  [H2] Credential and code endpoints are rate-limited per IP (LOGIN_RATE_LIMIT).
  [M5] Cache-Control: no-store on every response that carries tokens.
  Session routes pass the caller's user_id from the token to the service; a
  session id belonging to someone else matches nothing and returns 404.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import auth_rate_limit, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    RegisterRequest,
    ResendCodeRequest,
    SessionResponse,
    VerifyCodeRequest,
)
from auth.dependencies import get_current_claims, get_session_metadata
from auth.models import SessionMetadata, TokenClaims
from auth.service import AuthService

# Auth policy:
# - POST   /auth/register, /auth/login, /auth/refresh, /auth/logout: public
# - POST   /auth/verify-email, /auth/verify-2fa:                      public (code is the credential)
# - POST   /auth/resend-verification, /auth/resend-2fa:               public
# - GET    /auth/sessions, DELETE /auth/sessions/{id},
#   PATCH  /auth/sessions/{id}/block:                                 bearer token (get_current_claims)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(auth_rate_limit)  # [H2] below @router so the registered endpoint is the limited one
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    meta: SessionMetadata = Depends(get_session_metadata),
) -> AuthResponse:
    """Create an account. With email verification enabled no tokens are returned."""
    result = _service(request).register(body.name, body.email, body.password, meta)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    meta: SessionMetadata = Depends(get_session_metadata),
) -> AuthResponse:
    """Password login.

    Wrong password and unknown email both produce 401 invalid_credentials.
    With 2FA enabled the response has requires_2fa=true and empty tokens.
    """
    result = _service(request).login(body.email, body.password, meta)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(
    request: Request,
    response: Response,
    body: RefreshTokenRequest,
    meta: SessionMetadata = Depends(get_session_metadata),
) -> AuthResponse:
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    result = _service(request).refresh_token(body.refresh_token, meta)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: LogoutRequest) -> MessageResponse:
    """End the session of a refresh token. Unknown tokens also return 200."""
    _service(request).logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/verify-email", response_model=MessageResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def verify_email(request: Request, body: VerifyCodeRequest) -> MessageResponse:
    _service(request).verify_email(body.email, body.code)
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/auth/verify-2fa", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def verify_2fa(
    request: Request,
    response: Response,
    body: VerifyCodeRequest,
    meta: SessionMetadata = Depends(get_session_metadata),
) -> AuthResponse:
    result = _service(request).verify_2fa(body.email, body.code, meta)
    _no_store(response)
    return AuthResponse.from_result(result)


@router.post("/auth/resend-verification", response_model=MessageResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def resend_verification(request: Request, body: ResendCodeRequest) -> MessageResponse:
    _service(request).resend_verification(body.email)
    return MessageResponse(message="Verification code sent.")


@router.post("/auth/resend-2fa", response_model=MessageResponse)
@limiter.limit(auth_rate_limit)  # [H2]
def resend_2fa(request: Request, body: ResendCodeRequest) -> MessageResponse:
    _service(request).resend_2fa(body.email)
    return MessageResponse(message="2FA code sent.")


# ---------------------------------------------------------------------------
# Session management (bearer token required)
# ---------------------------------------------------------------------------


@router.get("/auth/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> list[SessionResponse]:
    """The caller's sessions, most recently active first."""
    return [SessionResponse.from_domain(s) for s in _service(request).get_sessions(claims.user_id)]


@router.delete("/auth/sessions/{session_id}", response_model=MessageResponse)
def delete_session(
    request: Request,
    session_id: str,
    claims: TokenClaims = Depends(get_current_claims),
) -> MessageResponse:
    _service(request).delete_session(claims.user_id, session_id)
    return MessageResponse(message="Session deleted.")


@router.patch("/auth/sessions/{session_id}/block", response_model=MessageResponse)
def block_session(
    request: Request,
    session_id: str,
    claims: TokenClaims = Depends(get_current_claims),
) -> MessageResponse:
    """Block a session. Its refresh token can no longer be exchanged."""
    _service(request).block_session(claims.user_id, session_id)
    return MessageResponse(message="Session blocked.")
