"""
auth/roles.py -- Role CRUD used by the /roles routes and startup seeding.

Slug and name are both unique. Slugs are never changed by update_role:
tokens already in circulation carry the slug, and renaming it would silently
change what those tokens authorize.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import logging

from auth.errors import RoleExists, RoleNotFound, translate_store_errors
from auth.models import Page, PermissionSet, Role
from auth.store import RoleStore

logger = logging.getLogger("gatehouse.auth")


class RoleService:
    def __init__(self, roles: RoleStore) -> None:
        self.roles = roles

    @translate_store_errors
    def get_role(self, role_id: str) -> Role:
        role = self.roles.get_by_id(role_id)
        if role is None:
            raise RoleNotFound()
        return role

    @translate_store_errors
    def get_role_by_slug(self, slug: str) -> Role:
        role = self.roles.get_by_slug(slug)
        if role is None:
            raise RoleNotFound()
        return role

    @translate_store_errors
    def list_roles(self, page: int = 1, limit: int = 10) -> Page:
        page = max(page, 1)
        limit = max(limit, 1)
        roles, total = self.roles.list_roles(offset=(page - 1) * limit, limit=limit)
        return Page(items=roles, page=page, limit=limit, total=total)

    @translate_store_errors
    def create_role(self, name: str, slug: str, permissions: list[str], description: str = "") -> Role:
        if self.roles.exists_by_slug(slug):
            raise RoleExists("Role with this slug already exists.")
        if self.roles.exists_by_name(name):
            raise RoleExists("Role with this name already exists.")
        role = Role(name=name, slug=slug, permissions=PermissionSet(permissions), description=description)
        self.roles.create_role(role)
        logger.info("Created role %s", slug)
        return role

    @translate_store_errors
    def update_role(
        self,
        role_id: str,
        name: str | None = None,
        permissions: list[str] | None = None,
        description: str | None = None,
    ) -> Role:
        """Change name, permissions, or description. Only provided fields are touched."""
        if self.roles.get_by_id(role_id) is None:
            raise RoleNotFound()
        fields: dict = {}
        if name:
            if self.roles.exists_by_name(name, exclude_id=role_id):
                raise RoleExists("Role with this name already exists.")
            fields["name"] = name
        if permissions:
            fields["permissions"] = permissions
        if description:
            fields["description"] = description
        if fields:
            self.roles.update_role(role_id, **fields)
        return self.get_role(role_id)

    @translate_store_errors
    def delete_role(self, role_id: str) -> None:
        if not self.roles.delete_role(role_id):
            raise RoleNotFound()
        logger.info("Deleted role %s", role_id)

    @translate_store_errors
    def seed_initial_roles(self) -> int:
        created = self.roles.seed_default_roles()
        if created:
            logger.info("Seeded %d default role(s)", created)
        return created
