"""
auth/tokens.py -- Password hashing, session JWTs, and refresh-token rotation.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets, so one class can never verify as the other. Both
       carry user_id, a type claim, iat and exp. Refresh tokens also carry a
       random jti: two refresh tokens issued for the same user in the same
       second must still be different strings, because the token string is
       the server-side lookup key.

  Rotation: a refresh token is single-use. rotate_refresh() takes (selects and
       deletes) the stored row and creates the replacement inside one store
       transaction, so a crash between the two steps can never leave the old
       token deleted without a new one (or the reverse). Expiry of a refresh
       token is judged from the stored row, which is authoritative; an expired
       row is reaped when presented.

  Passwords: bcrypt, cost factor 12. The _DUMMY_HASH constant enables timing
       equalization in the login path so response time does not reveal
       whether an email is registered.

  Reset tokens: secrets.token_hex(32) gives 256 bits from the OS CSPRNG.

  Configuration is passed in explicitly (TokenIssuer.from_settings() for the
  app, plain constructor arguments for tests). Nothing here reads the
  environment.

Layer rule: no imports from vault/ or bootstrap. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.errors import ConfigurationError, ExpiredCredential, InvalidCredential

if TYPE_CHECKING:
    from auth.store import CredentialStore, _Queries
    from core.config import Settings

logger = logging.getLogger("socialrunner.auth")

_ALGORITHM = "HS256"

BCRYPT_ROUNDS = 12
ACCESS_TOKEN_TTL = timedelta(minutes=15)
REFRESH_TOKEN_TTL = timedelta(days=7)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt (a known bcrypt
    limitation); the boundary layer caps password length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash. Never raises."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage -- treat as a mismatch.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Verify against it whenever the email is unknown.
_DUMMY_HASH: str = hash_password("socialrunner_timing_dummy")


def generate_reset_token() -> str:
    """Return an unpredictable 64-char hex password-reset token."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# Token issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies access/refresh JWTs and owns refresh-token rotation.

    Usage:
        issuer = TokenIssuer(store, access_secret, refresh_secret)
        pair = issuer.issue_token_pair(user_id)
        user_id = issuer.verify_access(pair.access_token)
        new_pair = issuer.rotate_refresh(pair.refresh_token)

    clock is injectable so tests can mint tokens that are already expired.
    """

    def __init__(
        self,
        store: CredentialStore,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ConfigurationError("Both JWT signing secrets are required.")
        if access_secret == refresh_secret:
            raise ConfigurationError("Access and refresh tokens must use different signing secrets.")
        self._store = store
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, store: CredentialStore, settings: Settings) -> TokenIssuer:
        return cls(
            store,
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_token_pair(self, user_id: int, store: _Queries | None = None) -> TokenPair:
        """Mint an access + refresh pair and persist the refresh token.

        Pass store when calling from inside a run_atomic() step so the new
        row is written on that transaction.
        """
        target = self._store if store is None else store
        now = self._clock()
        access_token = jwt.encode(
            {"user_id": user_id, "type": "access", "iat": now, "exp": now + self._access_ttl},
            self._access_secret,
            algorithm=_ALGORITHM,
        )
        expires_at = now + self._refresh_ttl
        refresh_token = jwt.encode(
            {
                "user_id": user_id,
                "type": "refresh",
                "jti": uuid.uuid4().hex,
                "iat": now,
                "exp": expires_at,
            },
            self._refresh_secret,
            algorithm=_ALGORITHM,
        )
        target.create_refresh_token(user_id, refresh_token, expires_at)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> int:
        """Return the user_id embedded in a valid, unexpired access token.

        Raises ExpiredCredential if past expiry, InvalidCredential for a bad
        signature, a malformed token, or a token of the wrong type.
        """
        payload = self._decode(token, self._access_secret, "access", verify_exp=True)
        return payload["user_id"]

    def _decode(self, token: str, secret: str, expected_type: str, verify_exp: bool) -> dict[str, Any]:
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM], options={"verify_exp": verify_exp})
        except ExpiredSignatureError as exc:
            raise ExpiredCredential() from exc
        except JWTError as exc:
            raise InvalidCredential() from exc
        if payload.get("type") != expected_type or not isinstance(payload.get("user_id"), int):
            raise InvalidCredential()
        return payload

    # ------------------------------------------------------------------
    # Rotate
    # ------------------------------------------------------------------

    def rotate_refresh(self, token: str, guard: Callable[[_Queries, int], None] | None = None) -> TokenPair:
        """Redeem a refresh token for a new pair. The presented token dies.

        Steps, all inside one store transaction:
          1. take (one DELETE ... RETURNING) the stored row; missing -> InvalidCredential
             (forged, logged out, or already rotated)
          2. stored expiry passed -> the delete is kept, ExpiredCredential
          3. guard(tx, user_id), if given; raising there rolls back the delete
          4. issue and persist the replacement pair

        The signature and type are checked before touching the store.
        """
        self._decode(token, self._refresh_secret, "refresh", verify_exp=False)
        now = self._clock()

        def _rotate(tx: _Queries) -> tuple[Any, TokenPair | None]:
            record = tx.take_refresh_token(token)
            if record is None or record.expires_at <= now:
                # Expired rows stay deleted: returning normally commits.
                return record, None
            if guard is not None:
                guard(tx, record.user_id)
            return record, self.issue_token_pair(record.user_id, store=tx)

        [(record, pair)] = self._store.run_atomic(_rotate)
        if record is None:
            logger.info("Refresh rejected: token not found")
            raise InvalidCredential()
        if pair is None:
            logger.info("Refresh rejected: expired token reaped for user_id=%s", record.user_id)
            raise ExpiredCredential()
        logger.debug("Refresh token rotated for user_id=%s", record.user_id)
        return pair
