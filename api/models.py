"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two
through the from_domain() factory methods below.

Input shape (email format, length bounds, 6-digit codes) is enforced here,
before any service method runs. Services assume well-formed input.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import AuthResult, Page, Role, Session, User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CODE_PATTERN = r"^\d{6}$"
SLUG_PATTERN = r"^[a-z0-9_]+$"


def _password_fits_bcrypt(value: str) -> str:
    # bcrypt reads at most 72 bytes; multibyte characters reach that below the character cap.
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=50)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_fits_bcrypt(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=255)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class VerifyCodeRequest(BaseModel):
    """Body for POST /auth/verify-email and POST /auth/verify-2fa."""

    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)


class ResendCodeRequest(BaseModel):
    """Body for POST /auth/resend-verification and POST /auth/resend-2fa."""

    email: EmailStr


# ---------------------------------------------------------------------------
# User and role request models
# ---------------------------------------------------------------------------


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=50)
    role_id: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_fits_bcrypt(value)


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    email: Optional[EmailStr] = None
    role_id: Optional[str] = None


class AssignRoleRequest(BaseModel):
    role_id: str = Field(min_length=1)


class CreateRoleRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=100)
    slug: str = Field(min_length=2, max_length=50, pattern=SLUG_PATTERN)
    permissions: list[str] = Field(min_length=1)
    description: str = Field(default="", max_length=500)


class UpdateRoleRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    permissions: Optional[list[str]] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    permissions: list[str]
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_domain(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            slug=role.slug,
            permissions=role.permissions.to_list(),
            description=role.description,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class UserResponse(BaseModel):
    """A user profile. The password hash is never part of any response."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: Optional[RoleResponse] = None
    is_verified: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_domain(cls, user: User, role: Optional[Role] = None) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=RoleResponse.from_domain(role) if role is not None else None,
            is_verified=user.is_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AuthResponse(BaseModel):
    """Result of register, login, verify-2fa, refresh, and OAuth callback.

    When requires_2fa is true the token fields are empty strings and the client
    must call POST /auth/verify-2fa with the emailed code.
    """

    access_token: str = ""
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_in: int = 0
    user: Optional[UserResponse] = None
    message: str = ""
    requires_2fa: bool = False

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=result.expires_in,
            user=UserResponse.from_domain(result.user, result.role) if result.user is not None else None,
            message=result.message,
            requires_2fa=result.requires_2fa,
        )


class MessageResponse(BaseModel):
    message: str


class SessionResponse(BaseModel):
    """A session as shown to its owner. The refresh token itself is never returned."""

    model_config = ConfigDict(frozen=True)

    id: str
    ip_address: str
    user_agent: str
    device_id: str
    is_blocked: bool
    expires_at: str
    last_active: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_domain(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            device_id=session.device_id,
            is_blocked=session.is_blocked,
            expires_at=session.expires_at,
            last_active=session.last_active,
            created_at=session.created_at,
        )


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def from_page(cls, page: Page) -> "PaginationMeta":
        return cls(page=page.page, limit=page.limit, total=page.total, total_pages=page.total_pages)


class UserListResponse(BaseModel):
    users: list[UserResponse]
    meta: PaginationMeta


class RoleListResponse(BaseModel):
    roles: list[RoleResponse]
    meta: PaginationMeta


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
