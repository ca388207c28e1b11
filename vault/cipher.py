"""
vault/cipher.py -- AES-256-GCM authenticated encryption for secrets at rest.

Security design decisions:
  Key: exactly 32 bytes, supplied out-of-band (API_KEY_ENCRYPTION_KEY, 64 hex
       chars). Never derived from user input. A missing or wrong-length key is
       a startup failure (ConfigurationError), not a per-call error.

  Nonce: a fresh 16-byte os.urandom() value per encrypt() call. GCM security
       collapses if a nonce repeats under one key, so nonces are never derived
       from counters or timestamps. Encrypting the same plaintext twice
       therefore yields different ciphertexts -- expected, not a bug.

  Tag: cryptography's AESGCM appends the 16-byte tag to the ciphertext. It is
       split off for storage and re-appended on decrypt. AESGCM.decrypt
       verifies the tag before returning any bytes, so no unauthenticated
       plaintext is ever released.

  Storage format: ciphertext, iv and auth_tag as separate hex strings.

Layer rule: vault/ may import from core/ only.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import ConfigurationError, DecryptionFailed

KEY_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16


@dataclass(frozen=True)
class EncryptedSecret:
    ciphertext: str
    iv: str
    auth_tag: str


class CipherVault:
    """Encrypts and decrypts short UTF-8 secrets.

    Usage:
        vault = CipherVault.from_hex(settings.api_key_encryption_key)
        sealed = vault.encrypt("AIza...")
        plain = vault.decrypt(sealed.ciphertext, sealed.iv, sealed.auth_tag)
    """

    def __init__(self, key: bytes) -> None:
        if not isinstance(key, bytes) or len(key) != KEY_SIZE:
            raise ConfigurationError(f"Encryption key must be exactly {KEY_SIZE} bytes.")
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> CipherVault:
        """Build a vault from a 64-char hex key. Raises ConfigurationError if unusable."""
        if not hex_key:
            raise ConfigurationError("API_KEY_ENCRYPTION_KEY is not set.")
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as exc:
            raise ConfigurationError("API_KEY_ENCRYPTION_KEY must be a hex string.") from exc
        if len(key) != KEY_SIZE:
            raise ConfigurationError(
                f"API_KEY_ENCRYPTION_KEY must be a {KEY_SIZE * 2}-character hex string ({KEY_SIZE} bytes)."
            )
        return cls(key)

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return EncryptedSecret(ciphertext=ciphertext.hex(), iv=nonce.hex(), auth_tag=tag.hex())

    def decrypt(self, ciphertext: str, iv: str, auth_tag: str) -> str:
        """Verify the tag and return the plaintext.

        Raises DecryptionFailed for tampered or corrupted data, a wrong key,
        malformed hex, or a nonce/tag of the wrong length.
        """
        try:
            ct_bytes = bytes.fromhex(ciphertext)
            nonce = bytes.fromhex(iv)
            tag = bytes.fromhex(auth_tag)
        except ValueError as exc:
            raise DecryptionFailed() from exc
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise DecryptionFailed()
        try:
            plaintext = self._aead.decrypt(nonce, ct_bytes + tag, None)
        except InvalidTag as exc:
            raise DecryptionFailed() from exc
        return plaintext.decode("utf-8")
