"""
auth/models.py -- Domain dataclasses for authentication and vault entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the services do the work.

Timestamps: created_at / updated_at / last_login_at are ISO 8601 strings, the
same representation the store writes. expires_at is a timezone-aware datetime
because every caller compares it against the clock.

Layer rule: no imports from vault/ or bootstrap.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An account identity.

    email is always stored lower-cased; callers normalize before lookup.
    password_hash never leaves auth/ -- use PublicUser across the boundary.
    """

    email: str
    password_hash: str
    id: int | None = None
    name: str | None = None
    is_active: bool = True
    last_login_at: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """The only user projection returned to the boundary layer."""

    id: int
    email: str
    name: str | None
    created_at: str


@dataclass
class RefreshToken:
    """Server-side record of an issued refresh JWT.

    token is the signed JWT itself and doubles as the lookup key. The row is
    single-use: rotation deletes it before the replacement is created.
    """

    token: str
    user_id: int
    expires_at: datetime
    id: int | None = None
    created_at: str | None = None


@dataclass
class PasswordResetToken:
    """One-time password reset credential. At most one live row per user."""

    token: str
    user_id: int
    expires_at: datetime
    used: bool = False
    id: int | None = None
    created_at: str | None = None


@dataclass
class ApiKey:
    """An encrypted third-party API key, one row per platform.

    ciphertext, iv and auth_tag are hex strings produced by
    vault.cipher.CipherVault. The plaintext is never persisted.
    """

    platform: str
    ciphertext: str
    iv: str
    auth_tag: str
    id: int | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthResult:
    """Returned by signup and login."""

    user: PublicUser
    access_token: str
    refresh_token: str
