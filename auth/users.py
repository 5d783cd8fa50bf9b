"""
auth/users.py -- User directory operations used by the /users routes.

Role assignment rules:
  create_user / update_user may only give a user the "user" or "admin" role.
  assign_role accepts any role, including super_admin. The HTTP layer limits
  that endpoint to super admins.

Deleting a user also deletes every session they hold, so their refresh
tokens stop working immediately. Access tokens already issued stay valid
until they expire; they are self-contained by design.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import logging

from auth.errors import (
    EmailExists,
    RoleNotAssignable,
    RoleNotFound,
    UserNotFound,
    translate_store_errors,
)
from auth.models import ADMIN, SUPER_ADMIN, USER, Page, Role, User
from auth.sessions import SessionStore
from auth.store import RoleStore, UserStore

logger = logging.getLogger("gatehouse.auth")

_ASSIGNABLE_SLUGS = frozenset({USER, ADMIN})


class UserService:
    def __init__(self, users: UserStore, roles: RoleStore, sessions: SessionStore) -> None:
        self.users = users
        self.roles = roles
        self.sessions = sessions

    @translate_store_errors
    def get_profile(self, user_id: str) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    @translate_store_errors
    def get_profile_with_role(self, user_id: str) -> tuple[User, Role | None]:
        user, role = self.users.get_by_id_with_role(user_id)
        if user is None:
            raise UserNotFound()
        return user, role

    @translate_store_errors
    def list_users(self, page: int = 1, limit: int = 10) -> Page:
        """Return a Page whose items are (User, Role | None) tuples."""
        page = max(page, 1)
        limit = max(limit, 1)
        users, total = self.users.list_users(offset=(page - 1) * limit, limit=limit)
        roles: dict[str, Role | None] = {}
        items = []
        for user in users:
            if user.role_id and user.role_id not in roles:
                roles[user.role_id] = self.roles.get_by_id(user.role_id)
            items.append((user, roles.get(user.role_id) if user.role_id else None))
        return Page(items=items, page=page, limit=limit, total=total)

    @translate_store_errors
    def create_user(self, name: str, email: str, password: str, role_id: str | None = None) -> tuple[User, Role]:
        """Create a verified account directly (admin action). Default role: user."""
        if self.users.exists_by_email(email):
            raise EmailExists()
        role = self._assignable_role(role_id) if role_id else self.roles.get_by_slug(USER)
        if role is None:
            raise RoleNotFound("Default user role not found.")
        user = User(name=name, email=email, password=password, role_id=role.id, is_verified=True)
        self.users.create_user(user)
        logger.info("Created user %s with role %s", user.id, role.slug)
        return user, role

    @translate_store_errors
    def update_user(
        self,
        user_id: str,
        name: str | None = None,
        email: str | None = None,
        role_id: str | None = None,
    ) -> tuple[User, Role | None]:
        """Change name, email, or role. Only provided fields are touched."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFound()

        fields: dict = {}
        if name:
            fields["name"] = name
        if email and email != user.email:
            if self.users.exists_by_email(email):
                raise EmailExists()
            fields["email"] = email
        if role_id:
            fields["role_id"] = self._assignable_role(role_id).id

        if fields:
            self.users.update_user(user_id, **fields)
        return self.get_profile_with_role(user_id)

    @translate_store_errors
    def delete_user(self, user_id: str) -> None:
        if not self.users.delete_user(user_id):
            raise UserNotFound()
        removed = self.sessions.delete_all_for_user(user_id)
        logger.info("Deleted user %s and %d session(s)", user_id, removed)

    @translate_store_errors
    def assign_role(self, user_id: str, role_id: str) -> tuple[User, Role | None]:
        """Give a user any existing role, super_admin included."""
        if self.users.get_by_id(user_id) is None:
            raise UserNotFound()
        role = self.roles.get_by_id(role_id)
        if role is None:
            raise RoleNotFound()
        self.users.update_user(user_id, role_id=role.id)
        logger.info("Assigned role %s to user %s", role.slug, user_id)
        return self.get_profile_with_role(user_id)

    @translate_store_errors
    def has_permission(self, user_id: str, permission: str) -> bool:
        _, role = self.users.get_by_id_with_role(user_id)
        if role is None:
            return False
        return role.permissions.allows(permission)

    @translate_store_errors
    def has_role(self, user_id: str, slug: str) -> bool:
        _, role = self.users.get_by_id_with_role(user_id)
        return role is not None and role.slug == slug

    @translate_store_errors
    def ensure_superadmin(self, email: str, password: str, name: str) -> tuple[User, bool]:
        """Create the bootstrap super admin if no account uses email.

        Returns (user, created). An existing account is left as it is.
        """
        existing = self.users.get_by_email(email)
        if existing is not None:
            return existing, False
        role = self.roles.get_by_slug(SUPER_ADMIN)
        if role is None:
            raise RoleNotFound("Super admin role not found. Seed roles first.")
        user = User(name=name, email=email, password=password, role_id=role.id, is_verified=True)
        self.users.create_user(user)
        logger.info("Created super admin account %s", user.id)
        return user, True

    def _assignable_role(self, role_id: str) -> Role:
        role = self.roles.get_by_id(role_id)
        if role is None:
            raise RoleNotFound()
        if role.slug not in _ASSIGNABLE_SLUGS:
            raise RoleNotAssignable()
        return role
