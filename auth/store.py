"""
auth/store.py -- SQLAlchemy Core persistence layer for users, roles, and OAuth links.

Pattern: Repository + Data Mapper.
UserStore / RoleStore / OAuthAccountStore are the repositories; the _row_to_*
functions are the mappers. Service and route code never touches SQL directly.

All tables share one MetaData and one Engine. create_db_engine() builds the
engine and creates the schema; every store (including auth.sessions) takes
that engine in its constructor so the whole process uses one pool.

Conventions:
  Ids are UUID4 strings generated here, never by the database.
  Timestamps are ISO 8601 UTC strings with microsecond precision, so plain
  string comparison orders them correctly.
  Role permissions are a JSON array in a TEXT column. json.loads/json.dumps
  happen only in this module; callers see a PermissionSet.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Passwords pass through hash_password() on every write. It is idempotent,
  so re-saving an already hashed value never double-hashes it.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import EmailExists, RoleExists
from auth.models import ADMIN, SUPER_ADMIN, USER, OAuthAccount, PermissionSet, Role, User
from auth.passwords import hash_password

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

roles_table = Table(
    "roles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("slug", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("permissions", Text, nullable=False, server_default="[]"),  # JSON array
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

users_table = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("role_id", String(36), index=True),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

sessions_table = Table(
    "sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("ip_address", String(64), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("device_id", String(255), nullable=False, server_default=""),
    Column("is_blocked", Integer, nullable=False, server_default="0"),
    Column("expires_at", String(32), nullable=False),
    Column("last_active", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

oauth_accounts_table = Table(
    "oauth_accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("provider", String(30), nullable=False),
    Column("provider_id", String(255), nullable=False),
    Column("access_token", Text, nullable=False, server_default=""),
    Column("refresh_token", Text, nullable=False, server_default=""),
    Column("expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("provider", "provider_id", name="uq_oauth_provider_subject"),
)

# Permissions granted to the roles seeded on first start.
DEFAULT_ROLES: tuple[tuple[str, str, str, list[str]], ...] = (
    ("SuperAdmin", SUPER_ADMIN, "Full access to every resource.", ["*"]),
    (
        "Admin",
        ADMIN,
        "Manages users and can view roles.",
        ["users.create", "users.read", "users.update", "users.delete", "roles.read", "roles.assign"],
    ),
    ("User", USER, "Default role for registered users.", ["users.read", "users.update"]),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Create the shared engine and make sure every table exists.

    SQLite needs check_same_thread=False because FastAPI runs sync route
    handlers in a thread pool and the pool hands connections across threads.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        engine = create_db_engine("sqlite:///gatehouse.db")
        store = UserStore(engine)
        user_id = store.create_user(User(name="Ann", email="ann@x.com", password="secret1"))
        user, role = store.get_by_id_with_role(user_id)
    """

    _MUTABLE_FIELDS = {"name", "email", "password", "role_id", "is_verified"}

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> str:
        """Insert a user and return its generated id.

        Raises EmailExists if the email is already taken. The UNIQUE constraint
        is the source of truth, so two concurrent registrations for the same
        address cannot both succeed.
        """
        user_id = user.id or new_id()
        now = now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    users_table.insert().values(
                        id=user_id,
                        name=user.name,
                        email=user.email,
                        password=hash_password(user.password),
                        role_id=user.role_id,
                        is_verified=1 if user.is_verified else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise EmailExists(cause=exc) from exc
        user.id = user_id
        user.created_at = now
        user.updated_at = now
        return user_id

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users_table.select().where(users_table.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users_table.select().where(users_table.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id_with_role(self, user_id: str) -> tuple[User | None, Role | None]:
        """Return (user, role). role is None when the user has none or it was deleted."""
        with self.engine.connect() as conn:
            row = conn.execute(users_table.select().where(users_table.c.id == user_id)).fetchone()
            if row is None:
                return None, None
            role_row = None
            if row.role_id:
                role_row = conn.execute(roles_table.select().where(roles_table.c.id == row.role_id)).fetchone()
        return _row_to_user(row), (_row_to_role(role_row) if role_row is not None else None)

    def exists_by_email(self, email: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(users_table).where(users_table.c.email == email)
            ).scalar()
        return (count or 0) > 0

    def list_users(self, offset: int = 0, limit: int = 10) -> tuple[list[User], int]:
        """Return one page of users (oldest first) and the total user count."""
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(users_table)).scalar() or 0
            rows = conn.execute(
                users_table.select().order_by(users_table.c.created_at, users_table.c.id).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, password, role_id, is_verified.
        Returns True if a row was updated, False if user_id was not found.
        Raises EmailExists if a new email collides with another user.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "password" in fields:
            fields["password"] = hash_password(fields["password"])
        if "is_verified" in fields:
            fields["is_verified"] = 1 if fields["is_verified"] else 0
        fields["updated_at"] = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(users_table.update().where(users_table.c.id == user_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            raise EmailExists(cause=exc) from exc
        return result.rowcount > 0

    def set_verified(self, user_id: str, verified: bool) -> bool:
        return self.update_user(user_id, is_verified=verified)

    def set_verified_by_email(self, email: str, verified: bool) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                users_table.update()
                .where(users_table.c.email == email)
                .values(is_verified=1 if verified else 0, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user and their OAuth links.

        Sessions are removed by the caller through SessionStore so that the
        session lifecycle stays in one place.
        """
        with self.engine.connect() as conn:
            conn.execute(oauth_accounts_table.delete().where(oauth_accounts_table.c.user_id == user_id))
            result = conn.execute(users_table.delete().where(users_table.c.id == user_id))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleStore:
    """Repository for Role records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_role(self, role: Role) -> str:
        """Insert a role and return its id. Raises RoleExists on a duplicate slug or name."""
        role_id = role.id or new_id()
        now = now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    roles_table.insert().values(
                        id=role_id,
                        name=role.name,
                        slug=role.slug,
                        description=role.description or "",
                        permissions=json.dumps(role.permissions.to_list()),
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise RoleExists(cause=exc) from exc
        role.id = role_id
        role.created_at = now
        role.updated_at = now
        return role_id

    def get_by_id(self, role_id: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles_table.select().where(roles_table.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_by_slug(self, slug: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles_table.select().where(roles_table.c.slug == slug)).fetchone()
        return _row_to_role(row) if row is not None else None

    def exists_by_slug(self, slug: str, exclude_id: str | None = None) -> bool:
        query = select(func.count()).select_from(roles_table).where(roles_table.c.slug == slug)
        if exclude_id:
            query = query.where(roles_table.c.id != exclude_id)
        with self.engine.connect() as conn:
            count = conn.execute(query).scalar()
        return (count or 0) > 0

    def exists_by_name(self, name: str, exclude_id: str | None = None) -> bool:
        query = select(func.count()).select_from(roles_table).where(roles_table.c.name == name)
        if exclude_id:
            query = query.where(roles_table.c.id != exclude_id)
        with self.engine.connect() as conn:
            count = conn.execute(query).scalar()
        return (count or 0) > 0

    def list_roles(self, offset: int = 0, limit: int = 10) -> tuple[list[Role], int]:
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(roles_table)).scalar() or 0
            rows = conn.execute(
                roles_table.select().order_by(roles_table.c.created_at, roles_table.c.id).offset(offset).limit(limit)
            ).fetchall()
        return [_row_to_role(r) for r in rows], total

    def update_role(self, role_id: str, **fields) -> bool:
        """Update name, slug, description, or permissions. Returns False if not found."""
        if "permissions" in fields:
            fields["permissions"] = json.dumps(PermissionSet(fields["permissions"]).to_list())
        fields["updated_at"] = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(roles_table.update().where(roles_table.c.id == role_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            raise RoleExists(cause=exc) from exc
        return result.rowcount > 0

    def delete_role(self, role_id: str) -> bool:
        """Delete a role. Users holding it keep the dangling role_id and get no permissions."""
        with self.engine.connect() as conn:
            result = conn.execute(roles_table.delete().where(roles_table.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    def seed_default_roles(self) -> int:
        """Create the super_admin, admin, and user roles if missing. Returns how many were created."""
        created = 0
        for name, slug, description, permissions in DEFAULT_ROLES:
            if self.exists_by_slug(slug):
                continue
            try:
                self.create_role(
                    Role(name=name, slug=slug, description=description, permissions=PermissionSet(permissions))
                )
                created += 1
            except RoleExists:
                # Another worker seeded it between the check and the insert.
                continue
        return created


# ---------------------------------------------------------------------------
# OAuth account links
# ---------------------------------------------------------------------------


class OAuthAccountStore:
    """Repository for OAuthAccount links (provider identity -> local user)."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_by_provider(self, provider: str, provider_id: str) -> OAuthAccount | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                oauth_accounts_table.select().where(
                    (oauth_accounts_table.c.provider == provider) & (oauth_accounts_table.c.provider_id == provider_id)
                )
            ).fetchone()
        return _row_to_oauth_account(row) if row is not None else None

    def create_account(self, account: OAuthAccount) -> str:
        account_id = account.id or new_id()
        now = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                oauth_accounts_table.insert().values(
                    id=account_id,
                    user_id=account.user_id,
                    provider=account.provider,
                    provider_id=account.provider_id,
                    access_token=account.access_token or "",
                    refresh_token=account.refresh_token or "",
                    expires_at=account.expires_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        account.id = account_id
        account.created_at = now
        account.updated_at = now
        return account_id

    def update_tokens(self, account_id: str, access_token: str, refresh_token: str, expires_at: str | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                oauth_accounts_table.update()
                .where(oauth_accounts_table.c.id == account_id)
                .values(
                    access_token=access_token or "",
                    refresh_token=refresh_token or "",
                    expires_at=expires_at,
                    updated_at=now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password=row.password,
        role_id=row.role_id,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    try:
        permissions = json.loads(row.permissions or "[]")
    except json.JSONDecodeError:
        permissions = []
    return Role(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description or "",
        permissions=PermissionSet(permissions if isinstance(permissions, list) else []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_oauth_account(row) -> OAuthAccount:
    return OAuthAccount(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        provider_id=row.provider_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
