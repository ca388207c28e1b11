"""
auth/service.py -- Credential Manager: signup, login, refresh, logout.

Session state per user:
    Anonymous -> Authenticated -> (Refreshing -> Authenticated)* -> LoggedOut

The manager owns the RefreshToken lifecycle. It talks only to the
CredentialStore and the TokenIssuer; no network I/O happens here.

Enumeration defense:
  login() runs bcrypt whether or not the email exists (against _DUMMY_HASH for
  unknown emails) and raises the same InvalidCredentials for "no such user"
  and "wrong password". AccountDisabled is only reported after the password
  verified, so it leaks nothing to someone without the password.

Layer rule: no imports from vault/ or bootstrap.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import AuthResult, PublicUser, TokenPair, User
from auth.store import CredentialStore
from auth.tokens import _DUMMY_HASH, BCRYPT_ROUNDS, TokenIssuer, hash_password, verify_password
from core.errors import AccountDisabled, AlreadyExists, InvalidCredential, InvalidCredentials

logger = logging.getLogger("socialrunner.auth")


def normalize_email(email: str) -> str:
    """Canonical form used for every lookup and insert."""
    return email.strip().lower()


def public_user(user: User) -> PublicUser:
    """Project a stored user to the fields allowed across the boundary."""
    return PublicUser(id=user.id, email=user.email, name=user.name, created_at=user.created_at or "")


class CredentialManager:
    """Orchestrates account and session operations.

    Usage:
        manager = CredentialManager(store, issuer)
        result = manager.signup("user@site.com", "s3cret-pass")
        pair = manager.refresh(result.refresh_token)
        manager.logout(pair.refresh_token)
    """

    def __init__(self, store: CredentialStore, issuer: TokenIssuer, bcrypt_rounds: int = BCRYPT_ROUNDS) -> None:
        self._store = store
        self._issuer = issuer
        self._bcrypt_rounds = bcrypt_rounds

    # ------------------------------------------------------------------
    # Account entry points
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, name: str | None = None) -> AuthResult:
        """Create an account and open its first session.

        Raises AlreadyExists if the normalized email is taken, including when a
        concurrent signup wins the unique-email race between our lookup and
        our insert.
        """
        email = normalize_email(email)
        if self._store.find_user_by_email(email) is not None:
            raise AlreadyExists()

        user = User(
            email=email,
            password_hash=hash_password(password, rounds=self._bcrypt_rounds),
            name=name,
        )
        try:
            user_id = self._store.create_user(user)
        except IntegrityError as exc:
            raise AlreadyExists() from exc
        self._store.update_last_login(user_id)

        created = self._store.get_user_by_id(user_id)
        pair = self._issuer.issue_token_pair(user_id)
        logger.info("User created: user_id=%s", user_id)
        return AuthResult(user=public_user(created), access_token=pair.access_token, refresh_token=pair.refresh_token)

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password and open a new session."""
        user = self._store.find_user_by_email(normalize_email(email))
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt.
            verify_password(password, _DUMMY_HASH)
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login refused: user_id=%s is deactivated", user.id)
            raise AccountDisabled()

        self._store.update_last_login(user.id)
        pair = self._issuer.issue_token_pair(user.id)
        logger.info("Login succeeded for user_id=%s", user.id)
        return AuthResult(user=public_user(user), access_token=pair.access_token, refresh_token=pair.refresh_token)

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. The presented token can never be used again.

        A user deactivated mid-session gets AccountDisabled even though the
        token itself is valid; that rejection rolls back, so the token is
        neither consumed nor replaced.
        """
        return self._issuer.rotate_refresh(refresh_token, guard=_require_active_user)

    def logout(self, refresh_token: str) -> None:
        """End one session. Unknown or already-deleted tokens are not an error."""
        self._store.delete_refresh_token(refresh_token)

    def revoke_all_sessions(self, user_id: int) -> int:
        """Delete every refresh token of the user. Returns how many were removed."""
        count = self._store.delete_refresh_tokens_for_user(user_id)
        logger.info("Revoked %d session(s) for user_id=%s", count, user_id)
        return count

    def authenticate(self, access_token: str) -> PublicUser:
        """Resolve a bearer access token to its active user.

        Raises ExpiredCredential / InvalidCredential for a bad token,
        InvalidCredential if the user no longer exists, and AccountDisabled
        if the user was deactivated after the token was issued.
        """
        user_id = self._issuer.verify_access(access_token)
        user = self._store.get_user_by_id(user_id)
        if user is None:
            raise InvalidCredential()
        if not user.is_active:
            raise AccountDisabled()
        return public_user(user)


def _require_active_user(tx, user_id: int) -> None:
    user = tx.get_user_by_id(user_id)
    if user is None:
        raise InvalidCredential()
    if not user.is_active:
        logger.info("Refresh refused: user_id=%s is deactivated", user_id)
        raise AccountDisabled()
