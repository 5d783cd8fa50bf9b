"""Unit tests for auth/users.py and auth/roles.py.

Covers:
- seeding default roles is idempotent
- ensure_superadmin creates once and leaves an existing account untouched
- has_permission honors the wildcard and exact names; has_role compares slugs
- list_users pages carry each user's role
- role updates never change the slug
"""

import pytest

from auth.errors import RoleExists, RoleNotAssignable, RoleNotFound, UserNotFound
from auth.models import ADMIN, SUPER_ADMIN, USER, SessionMetadata
from auth.roles import RoleService
from auth.users import UserService


@pytest.fixture
def user_service(stores):
    return UserService(stores.users, stores.roles, stores.sessions)


@pytest.fixture
def role_service(stores):
    return RoleService(stores.roles)


class TestSeeding:
    def test_seed_is_idempotent(self, role_service):
        # The stores fixture already seeded once.
        assert role_service.seed_initial_roles() == 0
        page = role_service.list_roles(1, 10)
        assert page.total == 3

    def test_ensure_superadmin(self, stores, user_service):
        user, created = user_service.ensure_superadmin("root@example.com", "RootPass1", "Root")
        assert created is True
        assert user.is_verified is True
        assert user_service.has_role(user.id, SUPER_ADMIN)

        again, created_again = user_service.ensure_superadmin("root@example.com", "Other123", "Other")
        assert created_again is False
        assert again.id == user.id
        assert again.name == "Root"


class TestPermissions:
    def test_wildcard(self, user_service):
        root, _ = user_service.ensure_superadmin("root@example.com", "RootPass1", "Root")
        assert user_service.has_permission(root.id, "roles.delete")
        assert user_service.has_permission(root.id, "anything")

    def test_exact(self, user_service):
        user, _ = user_service.create_user("Ann", "ann@example.com", "secret1")
        assert user_service.has_permission(user.id, "users.read")
        assert not user_service.has_permission(user.id, "users.delete")
        assert user_service.has_role(user.id, USER)
        assert not user_service.has_role(user.id, ADMIN)

    def test_unknown_user_has_nothing(self, user_service):
        assert user_service.has_permission("missing", "users.read") is False


class TestUserService:
    def test_create_rejects_super_admin_role(self, stores, user_service):
        super_role = stores.roles.get_by_slug(SUPER_ADMIN)
        with pytest.raises(RoleNotAssignable):
            user_service.create_user("Ann", "ann@example.com", "secret1", super_role.id)

    def test_assign_role_accepts_super_admin(self, stores, user_service):
        user, _ = user_service.create_user("Ann", "ann@example.com", "secret1")
        super_role = stores.roles.get_by_slug(SUPER_ADMIN)
        _, role = user_service.assign_role(user.id, super_role.id)
        assert role.slug == SUPER_ADMIN

    def test_assign_unknown_role(self, user_service):
        user, _ = user_service.create_user("Ann", "ann@example.com", "secret1")
        with pytest.raises(RoleNotFound):
            user_service.assign_role(user.id, "nope")

    def test_list_users_includes_roles(self, user_service):
        for i in range(3):
            user_service.create_user(f"User {i}", f"u{i}@example.com", "secret1")
        page = user_service.list_users(page=2, limit=2)
        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.items) == 1
        user, role = page.items[0]
        assert role.slug == USER

    def test_delete_user_removes_sessions(self, stores, user_service, auth_service_factory):
        result = auth_service_factory().register("Ann", "ann@example.com", "secret1", SessionMetadata())
        user_service.delete_user(result.user.id)
        assert stores.sessions.list_by_user(result.user.id) == []
        with pytest.raises(UserNotFound):
            user_service.delete_user(result.user.id)


class TestRoleService:
    def test_update_keeps_slug(self, role_service):
        role = role_service.create_role("Auditor", "auditor", ["users.read"])
        updated = role_service.update_role(role.id, name="Chief Auditor", permissions=["users.read", "roles.read"])
        assert updated.slug == "auditor"
        assert updated.name == "Chief Auditor"
        assert updated.permissions.to_list() == ["users.read", "roles.read"]

    def test_name_must_stay_unique(self, role_service):
        role_service.create_role("Auditor", "auditor", ["users.read"])
        other = role_service.create_role("Support", "support", ["users.read"])
        with pytest.raises(RoleExists):
            role_service.update_role(other.id, name="Auditor")

    def test_get_by_slug_missing(self, role_service):
        with pytest.raises(RoleNotFound):
            role_service.get_role_by_slug("ghost")
