"""Unit tests for auth/tokens.py -- password hashing, JWT issue/verify, rotation.

Covers:
- bcrypt hashing: salted, verifies, never raises on a malformed hash
- Token pair: distinct signing secrets, 15-minute / 7-day lifetimes, refresh row persisted
- verify_access: expired, forged, wrong type, and garbage tokens
- rotate_refresh: single use, expired rows reaped, forged tokens rejected,
  a raising guard leaves the presented token in place
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import bcrypt
import pytest
from jose import jwt

from auth.store import CredentialStore
from auth.tokens import (
    BCRYPT_ROUNDS,
    TokenIssuer,
    generate_reset_token,
    hash_password,
    verify_password,
)
from core.errors import AccountDisabled, ConfigurationError, ExpiredCredential, InvalidCredential
from tests.conftest import ACCESS_SECRET, REFRESH_SECRET


def _issuer_at(store: CredentialStore, offset: timedelta) -> TokenIssuer:
    """An issuer whose clock is shifted by offset -- used to mint already-expired tokens."""
    return TokenIssuer(
        store,
        ACCESS_SECRET,
        REFRESH_SECRET,
        clock=lambda: datetime.now(timezone.utc) + offset,
    )


# ---------------------------------------------------------------------------
# TestPasswordHashing
# ---------------------------------------------------------------------------


class TestPasswordHashing:
    def test_hash_is_not_plaintext_and_verifies(self) -> None:
        hashed = hash_password("s3cret-pass", rounds=4)
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("other-pass", hashed)

    def test_same_password_hashes_differently(self) -> None:
        """Each hash carries its own salt."""
        assert hash_password("same", rounds=4) != hash_password("same", rounds=4)

    def test_default_cost_factor_is_12(self) -> None:
        assert BCRYPT_ROUNDS == 12
        hashed = hash_password("pw")
        assert hashed.startswith("$2b$12$")
        assert bcrypt.checkpw(b"pw", hashed.encode())

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("pw", "not-a-bcrypt-hash") is False

    def test_reset_tokens_are_random_hex(self) -> None:
        first, second = generate_reset_token(), generate_reset_token()
        assert len(first) == 64
        int(first, 16)
        assert first != second


# ---------------------------------------------------------------------------
# TestIssueTokenPair
# ---------------------------------------------------------------------------


class TestIssueTokenPair:
    def test_secrets_must_differ(self, store: CredentialStore) -> None:
        with pytest.raises(ConfigurationError):
            TokenIssuer(store, ACCESS_SECRET, ACCESS_SECRET)

    def test_pair_round_trips_user_id(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue_token_pair(42)
        assert pair.access_token != pair.refresh_token
        assert issuer.verify_access(pair.access_token) == 42

    def test_lifetimes(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue_token_pair(7)
        access = jwt.get_unverified_claims(pair.access_token)
        refresh = jwt.get_unverified_claims(pair.refresh_token)
        assert access["exp"] - access["iat"] == 15 * 60
        assert refresh["exp"] - refresh["iat"] == 7 * 24 * 3600
        assert access["type"] == "access"
        assert refresh["type"] == "refresh"

    def test_refresh_token_persisted_with_expiry(self, issuer: TokenIssuer, store: CredentialStore) -> None:
        pair = issuer.issue_token_pair(7)
        record = store.find_refresh_token_by_token(pair.refresh_token)
        assert record is not None
        assert record.user_id == 7
        remaining = record.expires_at - datetime.now(timezone.utc)
        assert timedelta(days=6, hours=23) < remaining <= timedelta(days=7)

    def test_back_to_back_pairs_are_distinct(self, issuer: TokenIssuer) -> None:
        """Two pairs in the same second must not collide on the refresh lookup key."""
        first = issuer.issue_token_pair(7)
        second = issuer.issue_token_pair(7)
        assert first.refresh_token != second.refresh_token


# ---------------------------------------------------------------------------
# TestVerifyAccess
# ---------------------------------------------------------------------------


class TestVerifyAccess:
    def test_expired_access_token(self, issuer: TokenIssuer, store: CredentialStore) -> None:
        stale = _issuer_at(store, -timedelta(hours=1)).issue_token_pair(1)
        with pytest.raises(ExpiredCredential):
            issuer.verify_access(stale.access_token)

    def test_forged_signature(self, issuer: TokenIssuer) -> None:
        forged = jwt.encode(
            {"user_id": 1, "type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "x" * 64,
            algorithm="HS256",
        )
        with pytest.raises(InvalidCredential):
            issuer.verify_access(forged)

    def test_refresh_token_is_not_an_access_token(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue_token_pair(1)
        with pytest.raises(InvalidCredential):
            issuer.verify_access(pair.refresh_token)

    def test_wrong_type_claim_under_access_secret(self, issuer: TokenIssuer) -> None:
        token = jwt.encode(
            {"user_id": 1, "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidCredential):
            issuer.verify_access(token)

    def test_garbage(self, issuer: TokenIssuer) -> None:
        with pytest.raises(InvalidCredential):
            issuer.verify_access("not-a-jwt")


# ---------------------------------------------------------------------------
# TestRotateRefresh
# ---------------------------------------------------------------------------


class TestRotateRefresh:
    def test_rotation_is_single_use(self, issuer: TokenIssuer, store: CredentialStore) -> None:
        pair = issuer.issue_token_pair(5)
        rotated = issuer.rotate_refresh(pair.refresh_token)

        assert rotated.refresh_token != pair.refresh_token
        assert issuer.verify_access(rotated.access_token) == 5
        assert store.find_refresh_token_by_token(pair.refresh_token) is None
        assert store.find_refresh_token_by_token(rotated.refresh_token) is not None

        with pytest.raises(InvalidCredential):
            issuer.rotate_refresh(pair.refresh_token)

    def test_expired_refresh_row_is_reaped(self, issuer: TokenIssuer, store: CredentialStore) -> None:
        stale = _issuer_at(store, -timedelta(days=8)).issue_token_pair(5)
        assert store.find_refresh_token_by_token(stale.refresh_token) is not None

        with pytest.raises(ExpiredCredential):
            issuer.rotate_refresh(stale.refresh_token)
        assert store.find_refresh_token_by_token(stale.refresh_token) is None

    def test_validly_signed_but_unknown_token(self, issuer: TokenIssuer) -> None:
        forged = jwt.encode(
            {"user_id": 5, "type": "refresh", "exp": datetime.now(timezone.utc) + timedelta(days=1)},
            REFRESH_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(InvalidCredential):
            issuer.rotate_refresh(forged)

    def test_access_token_cannot_be_rotated(self, issuer: TokenIssuer) -> None:
        pair = issuer.issue_token_pair(5)
        with pytest.raises(InvalidCredential):
            issuer.rotate_refresh(pair.access_token)

    def test_guard_failure_keeps_presented_token(self, issuer: TokenIssuer, store: CredentialStore) -> None:
        pair = issuer.issue_token_pair(5)

        def refuse(tx, user_id: int) -> None:
            raise AccountDisabled()

        with pytest.raises(AccountDisabled):
            issuer.rotate_refresh(pair.refresh_token, guard=refuse)
        assert store.find_refresh_token_by_token(pair.refresh_token) is not None
