"""
auth/service.py -- The authentication orchestrator.

AuthService coordinates the user and role directories, the session store, the
OTP store, the token codec, and the mailer. Every public method is one
complete auth flow and is called once per HTTP request.

Flows:
  register        Created -> (verification on) PendingVerification -> Verified
  login           CredentialsChecked -> (2FA on, not super admin) PendingOTP -> SessionIssued
  verify_2fa      PendingOTP -> SessionIssued
  refresh_token   one valid session -> a new session (rotation, single use)
  oauth_login     provider identity -> linked/created user -> SessionIssued

Super admin exemption: a user whose role slug is "super_admin" skips both the
verification gate and the 2FA gate, so the bootstrap account can always log in.

No shared mutable state lives on the instance. All state is in the relational
store and the key-value store, so one AuthService serves every worker thread.

Emails are handed to the mailer and not awaited. The mailer contains its own
failures, so a dead SMTP server never fails a registration or login.

Layer rule: no imports from api/, cache/, core/, or mail/. The OTP backend and
the mailer are injected.
"""

from __future__ import annotations

import logging
import secrets
from typing import Protocol

from auth.errors import (
    AccountAlreadyVerified,
    AccountNotVerified,
    EmailExists,
    FeatureDisabled,
    InvalidCredentials,
    InvalidOrExpiredCode,
    InvalidOrExpiredToken,
    InvalidToken,
    RoleNotFound,
    SessionNotFound,
    SessionNotFoundOrBlocked,
    UserNotFound,
    translate_store_errors,
)
from auth.models import SUPER_ADMIN, USER, AuthResult, OAuthAccount, Role, Session, SessionMetadata, User
from auth.otp import ACTIVATION, ACTIVATION_TTL, TWO_FACTOR, TWO_FACTOR_TTL, OTPStore, generate_code
from auth.passwords import DUMMY_HASH, verify_password
from auth.sessions import SessionStore, expiry_after
from auth.store import OAuthAccountStore, RoleStore, UserStore
from auth.tokens import TokenCodec

logger = logging.getLogger("gatehouse.auth")


class Mailer(Protocol):
    """The three fire-and-forget sends the orchestrator needs."""

    def send_verification_email(self, to: str, code: str): ...

    def send_two_factor_email(self, to: str, code: str): ...

    def send_welcome_email(self, to: str, name: str): ...


def _is_super_admin(role: Role | None) -> bool:
    return role is not None and role.slug == SUPER_ADMIN


class AuthService:
    """Auth orchestrator.

    Usage:
        service = AuthService(users, roles, sessions, otp, codec, mailer,
                              email_verification_enabled=True)
        result = service.login("ann@x.com", "secret1", SessionMetadata(ip_address="1.2.3.4"))
        if result.requires_2fa:
            result = service.verify_2fa("ann@x.com", code, meta)
    """

    def __init__(
        self,
        users: UserStore,
        roles: RoleStore,
        sessions: SessionStore,
        otp: OTPStore,
        codec: TokenCodec,
        mailer: Mailer,
        *,
        oauth_accounts: OAuthAccountStore | None = None,
        email_verification_enabled: bool = False,
        two_factor_enabled: bool = False,
        welcome_email_providers: frozenset[str] = frozenset(),
    ) -> None:
        self.users = users
        self.roles = roles
        self.sessions = sessions
        self.otp = otp
        self.codec = codec
        self.mailer = mailer
        self.oauth_accounts = oauth_accounts
        self.email_verification_enabled = email_verification_enabled
        self.two_factor_enabled = two_factor_enabled
        self.welcome_email_providers = welcome_email_providers

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    @translate_store_errors
    def register(self, name: str, email: str, password: str, meta: SessionMetadata) -> AuthResult:
        """Create an account.

        Verification on: store an activation code, email it, return a message
        and no tokens. The user logs in after verifying.
        Verification off: the account is verified immediately and a session is
        issued.
        """
        if self.users.exists_by_email(email):
            raise EmailExists()

        role = self._default_role()
        user = User(
            name=name,
            email=email,
            password=password,
            role_id=role.id,
            is_verified=not self.email_verification_enabled,
        )
        self.users.create_user(user)
        logger.info("Registered user %s", user.id)

        if self.email_verification_enabled:
            self._issue_code(ACTIVATION, email, ACTIVATION_TTL)
            return AuthResult(
                message="Registration successful. Please check your email for the verification code."
            )
        return self._generate_auth_response(user.id, meta)

    @translate_store_errors
    def verify_email(self, email: str, code: str) -> None:
        """Mark the account verified if code matches the stored activation code.

        The code is deleted on success, so a second call with it fails.
        """
        if not self.otp.consume_code(ACTIVATION, email, code):
            raise InvalidOrExpiredCode()
        if not self.users.set_verified_by_email(email, True):
            raise UserNotFound()
        logger.info("Activation code accepted; account verified")

    @translate_store_errors
    def resend_verification(self, email: str) -> None:
        if not self.email_verification_enabled:
            raise FeatureDisabled("Email verification is not enabled.")
        user = self.users.get_by_email(email)
        if user is None:
            raise UserNotFound()
        if user.is_verified:
            raise AccountAlreadyVerified()
        self._issue_code(ACTIVATION, email, ACTIVATION_TTL)

    # ------------------------------------------------------------------
    # Login and two-factor
    # ------------------------------------------------------------------

    @translate_store_errors
    def login(self, email: str, password: str, meta: SessionMetadata) -> AuthResult:
        """Check credentials and either issue a session or start the 2FA step.

        Unknown email and wrong password raise the same InvalidCredentials, and
        both run one bcrypt check so timing does not tell them apart [C1].
        """
        user = self.users.get_by_email(email)
        if user is None:
            verify_password(password, DUMMY_HASH)
            raise InvalidCredentials()
        if not verify_password(password, user.password):
            raise InvalidCredentials()

        user, role = self.users.get_by_id_with_role(user.id)
        if user is None:
            raise InvalidCredentials()
        exempt = _is_super_admin(role)

        if self.email_verification_enabled and not user.is_verified and not exempt:
            raise AccountNotVerified()

        if self.two_factor_enabled and not exempt:
            self._issue_code(TWO_FACTOR, email, TWO_FACTOR_TTL)
            return AuthResult(
                user=user,
                role=role,
                requires_2fa=True,
                message="A verification code has been sent to your email.",
            )

        return self._generate_auth_response(user.id, meta)

    @translate_store_errors
    def verify_2fa(self, email: str, code: str, meta: SessionMetadata) -> AuthResult:
        """Complete a 2FA-gated login. This is where its tokens are issued."""
        if not self.otp.consume_code(TWO_FACTOR, email, code):
            raise InvalidOrExpiredCode()
        user = self.users.get_by_email(email)
        if user is None:
            raise UserNotFound()
        return self._generate_auth_response(user.id, meta)

    @translate_store_errors
    def resend_2fa(self, email: str) -> None:
        if not self.two_factor_enabled:
            raise FeatureDisabled("Two-factor authentication is not enabled.")
        if self.users.get_by_email(email) is None:
            raise UserNotFound()
        self._issue_code(TWO_FACTOR, email, TWO_FACTOR_TTL)

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    @translate_store_errors
    def refresh_token(self, refresh_token: str, meta: SessionMetadata) -> AuthResult:
        """Exchange a refresh token for a new pair and rotate its session.

        The old session is removed with a conditional delete before anything
        is minted. Of two concurrent refreshes with the same token only the
        one whose delete hits a row continues; the other is rejected.
        Claims are rebuilt from the current role, not copied from the old token.
        """
        try:
            claims = self.codec.validate(refresh_token)
        except InvalidToken as exc:
            raise InvalidOrExpiredToken(cause=exc) from exc

        session = self.sessions.find_valid_by_token(refresh_token)
        if session is None or session.user_id != claims.user_id:
            raise SessionNotFoundOrBlocked()

        if not self.sessions.delete_valid_by_token(refresh_token):
            raise SessionNotFoundOrBlocked()

        return self._generate_auth_response(claims.user_id, meta)

    @translate_store_errors
    def logout(self, refresh_token: str) -> None:
        """Delete the session for refresh_token. Unknown tokens are not an error."""
        self.sessions.delete_by_token(refresh_token)

    # ------------------------------------------------------------------
    # Session management (always scoped to the caller's user id)
    # ------------------------------------------------------------------

    @translate_store_errors
    def get_sessions(self, user_id: str) -> list[Session]:
        return self.sessions.list_by_user(user_id)

    @translate_store_errors
    def delete_session(self, user_id: str, session_id: str) -> None:
        if not self.sessions.delete_by_id(user_id, session_id):
            raise SessionNotFound()

    @translate_store_errors
    def block_session(self, user_id: str, session_id: str) -> None:
        if not self.sessions.block(user_id, session_id):
            raise SessionNotFound()

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @translate_store_errors
    def oauth_login(
        self,
        provider: str,
        provider_id: str,
        email: str,
        name: str,
        meta: SessionMetadata,
        access_token: str = "",
        refresh_token: str = "",
        expires_at: str | None = None,
    ) -> AuthResult:
        """Sign in with an identity the provider has verified.

        Lookup order: an existing link for (provider, provider_id), then a
        local account with the same email (which gets linked), then a new
        verified account with a random password. OAuth logins skip the 2FA
        gate.
        """
        if self.oauth_accounts is None:
            raise FeatureDisabled("OAuth login is not enabled.")

        account = self.oauth_accounts.get_by_provider(provider, provider_id)
        if account is not None:
            user = self.users.get_by_id(account.user_id)
            if user is None:
                raise UserNotFound()
            self.oauth_accounts.update_tokens(account.id, access_token, refresh_token, expires_at)
            return self._generate_auth_response(user.id, meta)

        created = False
        user = self.users.get_by_email(email)
        if user is None:
            role = self._default_role()
            user = User(
                name=name or email.split("@", 1)[0],
                email=email,
                password=secrets.token_urlsafe(32),
                role_id=role.id,
                is_verified=True,
            )
            self.users.create_user(user)
            created = True
            logger.info("Created user %s from %s login", user.id, provider)
        elif not user.is_verified:
            # The provider vouched for this address.
            self.users.set_verified(user.id, True)

        self.oauth_accounts.create_account(
            OAuthAccount(
                user_id=user.id,
                provider=provider,
                provider_id=provider_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            )
        )
        if created and provider in self.welcome_email_providers:
            self.mailer.send_welcome_email(email, user.name)

        return self._generate_auth_response(user.id, meta)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _issue_code(self, purpose: str, email: str, ttl: int) -> None:
        code = generate_code()
        self.otp.set_code(purpose, email, code, ttl)
        if purpose == ACTIVATION:
            self.mailer.send_verification_email(email, code)
        else:
            self.mailer.send_two_factor_email(email, code)

    def _default_role(self) -> Role:
        role = self.roles.get_by_slug(USER)
        if role is None:
            raise RoleNotFound("Default user role not found.")
        return role

    def _generate_auth_response(self, user_id: str, meta: SessionMetadata) -> AuthResult:
        """Mint a token pair from the user's current role and persist its session."""
        user, role = self.users.get_by_id_with_role(user_id)
        if user is None:
            raise UserNotFound()
        role_slug = role.slug if role else ""
        permissions = role.permissions.to_list() if role else []

        pair = self.codec.issue_pair(user.id, user.email, role_slug, permissions)
        self.sessions.create(user.id, pair.refresh_token, meta, expiry_after(self.codec.refresh_ttl))

        return AuthResult(
            user=user,
            role=role,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
        )
