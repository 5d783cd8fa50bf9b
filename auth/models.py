"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores, services, and routes do the work.

PermissionSet is the one exception to "zero logic": the wildcard rule lives
with the data it describes so every caller evaluates it the same way.

Layer rule: no imports from api/, cache/, core/, or mail/.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

WILDCARD = "*"

# Role slugs the system itself depends on. Other roles may exist, but these
# three are seeded at startup and referenced by the auth flows.
SUPER_ADMIN = "super_admin"
ADMIN = "admin"
USER = "user"


class PermissionSet:
    """Ordered, de-duplicated collection of permission strings.

    grants_all is True when the set contains the "*" wildcard. allows()
    checks it first, so a wildcard role matches any permission name,
    including ones that did not exist when the role was created.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: tuple[str, ...] = tuple(dict.fromkeys(str(p) for p in items))

    @property
    def grants_all(self) -> bool:
        return WILDCARD in self._items

    def allows(self, permission: str) -> bool:
        if self.grants_all:
            return True
        return permission in self._items

    def to_list(self) -> list[str]:
        return list(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, permission: object) -> bool:
        return permission in self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PermissionSet):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"PermissionSet({list(self._items)!r})"


@dataclass
class Role:
    """A named bundle of permissions. slug is the stable identifier put in tokens."""

    name: str
    slug: str
    permissions: PermissionSet = field(default_factory=PermissionSet)
    description: str = ""
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """Represents an identity in Gatehouse.

    password is always a bcrypt hash once persisted. OAuth-created users get a
    random password hash they never learn, so password login stays closed for
    them until they reset it.
    """

    name: str
    email: str
    password: str = ""
    role_id: str | None = None
    is_verified: bool = False
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SessionMetadata:
    """Request context captured whenever a refresh credential is issued."""

    ip_address: str = ""
    user_agent: str = ""
    device_id: str = ""


@dataclass
class Session:
    """One issued refresh credential.

    Valid for refresh iff the row exists, is not blocked, and now < expires_at.
    """

    user_id: str
    token: str
    expires_at: str
    ip_address: str = ""
    user_agent: str = ""
    device_id: str = ""
    is_blocked: bool = False
    id: str | None = None
    last_active: str | None = None
    created_at: str | None = None


@dataclass
class OAuthAccount:
    """Link between a local user and an external identity provider account."""

    user_id: str
    provider: str  # "google", "github"
    provider_id: str  # provider's stable subject id
    access_token: str = ""
    refresh_token: str = ""
    expires_at: str | None = None
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, verified claims of an access or refresh token."""

    user_id: str
    email: str
    role: str
    permissions: PermissionSet
    issuer: str
    issued_at: int
    not_before: int
    expires_at: int
    jti: str = ""


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


@dataclass
class AuthResult:
    """Outcome of a login-type flow.

    Either a token pair is present, or requires_2fa is True and tokens are
    empty, or only message is set (registration pending verification).
    """

    user: User | None = None
    role: Role | None = None
    access_token: str = ""
    refresh_token: str = ""
    expires_in: int = 0
    requires_2fa: bool = False
    message: str = ""


@dataclass
class Page:
    """One page of a listing plus the numbers a client needs to paginate."""

    items: list
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
