"""
core/errors.py -- Error taxonomy for the credential lifecycle engine.

Every domain-rule violation raised by auth/ and vault/ is a CredentialError
subclass carrying a stable ``code`` and a secret-free ``message``. The
boundary layer maps codes to user-facing responses; this package never
decides status codes. Messages must never contain passwords, raw tokens,
plaintext keys or reset URLs.

Store-level failures (SQLAlchemy connectivity, constraint violations) are NOT
wrapped here -- they propagate unchanged as infrastructure errors.

ConfigurationError is separate from the hierarchy: it is a fatal startup
condition raised while wiring components, never during a request.

Layer rule: core/ is the kernel. This module may not import from auth/ or vault/.
"""

from __future__ import annotations


class CredentialError(Exception):
    """Base class for every domain error surfaced to the boundary layer."""

    code: str = "credential_error"
    message: str = "Credential operation failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Account errors
# ---------------------------------------------------------------------------


class AlreadyExists(CredentialError):
    code = "already_exists"
    message = "A user with this email already exists."


class InvalidCredentials(CredentialError):
    """Wrong email OR wrong password -- one message for both to prevent enumeration."""

    code = "invalid_credentials"
    message = "Invalid email or password."


class AccountDisabled(CredentialError):
    code = "account_disabled"
    message = "Account is deactivated."


# ---------------------------------------------------------------------------
# Session token errors (access and refresh)
# ---------------------------------------------------------------------------


class InvalidCredential(CredentialError):
    code = "invalid_token"
    message = "Token is invalid."


class ExpiredCredential(CredentialError):
    code = "token_expired"
    message = "Token has expired."


# ---------------------------------------------------------------------------
# Password reset errors
# ---------------------------------------------------------------------------


class InvalidOrExpiredToken(CredentialError):
    code = "invalid_reset_token"
    message = "Invalid or expired reset token."


class TokenAlreadyUsed(CredentialError):
    code = "reset_token_used"
    message = "Reset token has already been used."


# ---------------------------------------------------------------------------
# Collaborator errors
# ---------------------------------------------------------------------------


class DecryptionFailed(CredentialError):
    code = "decryption_failed"
    message = "Decryption failed -- data may be corrupted or tampered."


class DeliveryFailed(CredentialError):
    code = "delivery_failed"
    message = "Failed to send email."


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class ConfigurationError(ValueError):
    """Missing or malformed configuration detected while wiring components."""
