"""
auth/reset.py -- Password reset flow: one-time emailed tokens.

The flow owns the PasswordResetToken lifecycle. It shares write access to
User.password_hash and, after a successful reset, asks the CredentialManager
to revoke every session of the user so anything obtained before the reset
stops working.

Enumeration defense:
  request_reset() returns the same acknowledgement whether or not the email
  belongs to an account. For unknown emails it does nothing else: no token,
  no mail, no distinguishable error.

Atomicity:
  The password update and the used flag are written in ONE run_atomic()
  transaction. The used flag is a compare-and-set (used = 0 -> 1), so when two
  resets race on one token the loser raises TokenAlreadyUsed and its password
  write is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from auth.mailer import Mailer
from auth.service import CredentialManager, normalize_email
from auth.store import CredentialStore
from auth.tokens import BCRYPT_ROUNDS, generate_reset_token, hash_password
from core.errors import InvalidOrExpiredToken, TokenAlreadyUsed

logger = logging.getLogger("socialrunner.auth.reset")

RESET_TOKEN_TTL = timedelta(hours=1)

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a password reset link has been sent."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_reset_url(callback_base_url: str, token: str) -> str:
    return f"{callback_base_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


class PasswordResetFlow:
    def __init__(
        self,
        store: CredentialStore,
        mailer: Mailer,
        sessions: CredentialManager,
        token_ttl: timedelta = RESET_TOKEN_TTL,
        bcrypt_rounds: int = BCRYPT_ROUNDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._sessions = sessions
        self._token_ttl = token_ttl
        self._bcrypt_rounds = bcrypt_rounds
        self._clock = clock

    def request_reset(self, email: str, callback_base_url: str) -> str:
        """Issue a fresh reset token and mail the link. Returns the uniform acknowledgement.

        Any earlier token of the user is deleted first, so at most one is live.
        DeliveryFailed from the mailer propagates to the caller.
        """
        user = self._store.find_user_by_email(normalize_email(email))
        if user is None:
            return RESET_REQUESTED_MESSAGE

        self._store.delete_password_reset_tokens_for_user(user.id)
        token = generate_reset_token()
        self._store.create_password_reset_token(user.id, token, self._clock() + self._token_ttl)

        self._mailer.send_password_reset_email(user.email, token, build_reset_url(callback_base_url, token))
        logger.info("Password reset requested for user_id=%s", user.id)
        return RESET_REQUESTED_MESSAGE

    def reset_password(self, token: str, new_password: str) -> None:
        """Replace the password of the token's owner and sign them out everywhere.

        Raises InvalidOrExpiredToken for an unknown or expired token (expired
        rows are deleted on the way out) and TokenAlreadyUsed for a token that
        was already redeemed.
        """
        record = self._store.find_password_reset_token_by_token(token)
        if record is None:
            raise InvalidOrExpiredToken()
        if self._clock() > record.expires_at:
            self._store.delete_password_reset_token(record.id)
            logger.info("Expired reset token reaped for user_id=%s", record.user_id)
            raise InvalidOrExpiredToken()
        if record.used:
            raise TokenAlreadyUsed()

        password_hash = hash_password(new_password, rounds=self._bcrypt_rounds)

        def _mark_used(tx) -> None:
            if not tx.mark_password_reset_token_used(record.id):
                raise TokenAlreadyUsed()

        def _replace_password(tx) -> None:
            if not tx.update_user(record.user_id, password_hash=password_hash):
                raise InvalidOrExpiredToken()

        self._store.run_atomic(_mark_used, _replace_password)
        self._sessions.revoke_all_sessions(record.user_id)
        logger.info("Password reset completed for user_id=%s", record.user_id)
