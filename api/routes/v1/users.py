"""
api/routes/v1/users.py -- User management REST endpoints.

Routes:
  GET    /api/v1/users/me          -- caller's profile with role
  GET    /api/v1/users/{id}        -- any user's profile (authenticated)
  PUT    /api/v1/users/{id}        -- update (self, or admin/super_admin)
  GET    /api/v1/users             -- paginated list (admin, super_admin)
  POST   /api/v1/users             -- create user (admin, super_admin)
  DELETE /api/v1/users/{id}        -- delete user and their sessions (admin, super_admin)
  PATCH  /api/v1/users/{id}/role   -- assign any role (super_admin)

Role restrictions:
  POST and PUT may only set the user or admin role; super_admin is granted
  solely through PATCH /users/{id}/role. A caller who is not an admin may
  edit their own name and email but not their role. Accounts holding
  super_admin can be edited or deleted only by a super admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import (
    AssignRoleRequest,
    CreateUserRequest,
    MessageResponse,
    PaginationMeta,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
)
from auth.dependencies import get_current_claims, require_role
from auth.models import ADMIN, SUPER_ADMIN, TokenClaims
from auth.users import UserService

# Auth policy:
# - GET    /users/me, GET /users/{id}:        bearer token
# - PUT    /users/{id}:                       bearer token; self or admin/super_admin (checked in handler)
# - GET    /users, POST /users, DELETE /users/{id}: admin, super_admin
# - PATCH  /users/{id}/role:                  super_admin
router = APIRouter()

_admins = require_role(ADMIN, SUPER_ADMIN)
_super_admin = require_role(SUPER_ADMIN)


def _service(request: Request) -> UserService:
    return request.app.state.user_service


def _guard_super_admin_target(request: Request, claims: TokenClaims, user_id: str) -> None:
    """Only a super admin may modify or delete another super admin."""
    if claims.role == SUPER_ADMIN or claims.user_id == user_id:
        return
    if _service(request).has_role(user_id, SUPER_ADMIN):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only a super admin can change a super admin account."},
        )


@router.get("/users/me", response_model=UserResponse)
def me(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> UserResponse:
    user, role = _service(request).get_profile_with_role(claims.user_id)
    return UserResponse.from_domain(user, role)


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    claims: TokenClaims = Depends(_admins),
) -> UserListResponse:
    result = _service(request).list_users(page, limit)
    return UserListResponse(
        users=[UserResponse.from_domain(user, role) for user, role in result.items],
        meta=PaginationMeta.from_page(result),
    )


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: CreateUserRequest,
    claims: TokenClaims = Depends(_admins),
) -> UserResponse:
    user, role = _service(request).create_user(body.name, body.email, body.password, body.role_id)
    return UserResponse.from_domain(user, role)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: str, claims: TokenClaims = Depends(get_current_claims)) -> UserResponse:
    user, role = _service(request).get_profile_with_role(user_id)
    return UserResponse.from_domain(user, role)


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UpdateUserRequest,
    claims: TokenClaims = Depends(get_current_claims),
) -> UserResponse:
    """Update a profile. Non-admins may only edit themselves and never their role."""
    is_admin = claims.role in (ADMIN, SUPER_ADMIN)
    if claims.user_id != user_id and not is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only update your own profile."},
        )
    if body.role_id and not is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You cannot change your own role."},
        )
    _guard_super_admin_target(request, claims, user_id)
    user, role = _service(request).update_user(
        user_id,
        name=body.name,
        email=str(body.email) if body.email else None,
        role_id=body.role_id,
    )
    return UserResponse.from_domain(user, role)


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(request: Request, user_id: str, claims: TokenClaims = Depends(_admins)) -> MessageResponse:
    _guard_super_admin_target(request, claims, user_id)
    _service(request).delete_user(user_id)
    return MessageResponse(message="User deleted successfully.")


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def assign_role(
    request: Request,
    user_id: str,
    body: AssignRoleRequest,
    claims: TokenClaims = Depends(_super_admin),
) -> UserResponse:
    user, role = _service(request).assign_role(user_id, body.role_id)
    return UserResponse.from_domain(user, role)
