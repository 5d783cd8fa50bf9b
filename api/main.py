"""
api/main.py -- FastAPI application entry point for Gatehouse.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- holds OAuth state between redirect and callback

Lifespan builds every collaborator once (engine, key-value backend, mailer,
stores, token codec, services), publishes them on app.state, seeds the
default roles and the super admin account, and tears everything down in
reverse on shutdown. Route handlers and dependencies read app.state only.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.engine import Engine
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.oauth import build_oauth, welcome_email_providers
from auth.otp import OTPStore
from auth.roles import RoleService
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import OAuthAccountStore, RoleStore, UserStore, create_db_engine
from auth.tokens import TokenCodec
from auth.users import UserService
from cache.store import MemoryStore, RedisStore
from core.config import Settings, get_settings
from mail.dispatch import BackgroundMailer
from mail.sender import EmailSender

VERSION = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, _settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_state(app: FastAPI, settings: Settings, engine: Engine, kv_backend, mailer) -> None:
    """Construct stores and services over the given resources and publish them on app.state.

    Shared by the real lifespan and the test suite, which passes an in-memory
    engine, a MemoryStore, and a recording mailer.
    """
    users = UserStore(engine)
    roles = RoleStore(engine)
    sessions = SessionStore(engine)
    oauth_accounts = OAuthAccountStore(engine)
    codec = TokenCodec(
        settings.secret_key,
        issuer=settings.jwt_issuer,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=settings.refresh_token_expire_seconds,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.kv = kv_backend
    app.state.mailer = mailer
    app.state.token_codec = codec
    app.state.oauth = build_oauth(settings)
    app.state.auth_service = AuthService(
        users,
        roles,
        sessions,
        OTPStore(kv_backend),
        codec,
        mailer,
        oauth_accounts=oauth_accounts,
        email_verification_enabled=settings.email_verification_enabled,
        two_factor_enabled=settings.two_factor_enabled,
        welcome_email_providers=welcome_email_providers(settings),
    )
    app.state.user_service = UserService(users, roles, sessions)
    app.state.role_service = RoleService(roles)


def bootstrap(app: FastAPI, settings: Settings) -> None:
    """Seed default roles and the super admin account. Idempotent."""
    app.state.role_service.seed_initial_roles()
    _, created = app.state.user_service.ensure_superadmin(
        settings.superadmin_email, settings.superadmin_password, settings.superadmin_name
    )
    if created:
        logger.warning("Created default super admin account. Change its password.")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine first -- creates the schema every store relies on.
      2. Key-value backend and mailer -- injected into AuthService.
      3. build_state() -- stores and services over the resources above.
      4. bootstrap() -- needs the services.
    Shutdown drains queued emails before closing connections.
    """
    settings = get_settings()
    logger.info("Gatehouse API starting up")
    engine = create_db_engine(settings.database_url)
    if settings.use_memory_cache:
        kv = MemoryStore()
        logger.warning("Using in-process key-value store. Codes are lost on restart and not shared between workers.")
    else:
        kv = RedisStore(settings.redis_url)
    mailer = BackgroundMailer(EmailSender.from_settings(settings), max_workers=settings.email_workers)

    build_state(app, settings, engine, kv, mailer)
    bootstrap(app, settings)
    logger.info(
        "Auth initialized (email_verification=%s, two_factor=%s, email=%s)",
        settings.email_verification_enabled,
        settings.two_factor_enabled,
        settings.email_enabled,
    )

    yield

    # Shutdown
    mailer.shutdown(wait=True)
    kv.close()
    engine.dispose()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Authentication, sessions, RBAC, and user management.",
    version=VERSION,
    lifespan=lifespan,
    # Interactive docs only in development.
    docs_url="/docs" if _settings.debug else None,
    redoc_url="/redoc" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI -> Session.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Device-ID"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback (CSRF protection for
# the authorization code flow). Tokens themselves never go in this cookie.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Wall-clock time before and after call_next gives the latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(oauth_router, prefix="/api/v1", tags=["OAuth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map every auth-core failure to its status code and stable error code.

    5xx kinds (StoreFailure, TokenGenerationFailed) are logged with their
    cause. The cause never reaches the response body.
    """
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %r",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.cause,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with detail={"code", "message"}. When
    detail is already a dict, use it directly as the error field rather than
    stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


def _check_database(engine: Engine) -> str:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


def _check_cache(kv) -> str:
    try:
        return "ok" if kv.ping() else "error"
    except Exception:
        logger.exception("Health check: key-value store unreachable")
        return "error"


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness plus database and key-value store status."""
    components = {
        "app": "ok",
        "database": _check_database(request.app.state.engine),
        "redis": _check_cache(request.app.state.kv),
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
