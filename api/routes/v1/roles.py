"""
api/routes/v1/roles.py -- Role management REST endpoints (super_admin only).

Routes:
  GET    /api/v1/roles        -- paginated list
  POST   /api/v1/roles        -- create (unique slug and name)
  GET    /api/v1/roles/{id}   -- one role
  PUT    /api/v1/roles/{id}   -- update name, permissions, description
  DELETE /api/v1/roles/{id}   -- delete
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    CreateRoleRequest,
    MessageResponse,
    PaginationMeta,
    RoleListResponse,
    RoleResponse,
    UpdateRoleRequest,
)
from auth.dependencies import require_role
from auth.models import SUPER_ADMIN
from auth.roles import RoleService

# Auth policy: every route requires the super_admin role.
router = APIRouter(dependencies=[Depends(require_role(SUPER_ADMIN))])


def _service(request: Request) -> RoleService:
    return request.app.state.role_service


@router.get("/roles", response_model=RoleListResponse)
def list_roles(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> RoleListResponse:
    result = _service(request).list_roles(page, limit)
    return RoleListResponse(
        roles=[RoleResponse.from_domain(r) for r in result.items],
        meta=PaginationMeta.from_page(result),
    )


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: CreateRoleRequest) -> RoleResponse:
    role = _service(request).create_role(body.name, body.slug, body.permissions, body.description)
    return RoleResponse.from_domain(role)


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: str) -> RoleResponse:
    return RoleResponse.from_domain(_service(request).get_role(role_id))


@router.put("/roles/{role_id}", response_model=RoleResponse)
def update_role(request: Request, role_id: str, body: UpdateRoleRequest) -> RoleResponse:
    role = _service(request).update_role(
        role_id,
        name=body.name,
        permissions=body.permissions,
        description=body.description,
    )
    return RoleResponse.from_domain(role)


@router.delete("/roles/{role_id}", response_model=MessageResponse)
def delete_role(request: Request, role_id: str) -> MessageResponse:
    _service(request).delete_role(role_id)
    return MessageResponse(message="Role deleted successfully.")
