"""
vault/service.py -- Encrypted storage for third-party API keys, one per platform.

Keys are encrypted with CipherVault before they reach the store and are
decrypted only transiently on read. A key that fails to decrypt (corrupted
row, or a row written under a previous encryption key) is logged by platform
name and skipped, so one bad entry never breaks the whole batch.

Layer rule: vault/ may import from core/ only. The store is described by the
ApiKeyRepository protocol; auth.store.CredentialStore satisfies it.
"""

from __future__ import annotations

import logging
from typing import Protocol

from core.errors import DecryptionFailed
from vault.cipher import CipherVault

logger = logging.getLogger("socialrunner.vault")

# Platforms the application consumes; get_api_keys_status() always reports these.
KNOWN_PLATFORMS: tuple[str, ...] = ("youtube", "rapidapi")


class StoredApiKey(Protocol):
    platform: str
    ciphertext: str
    iv: str
    auth_tag: str


class ApiKeyRepository(Protocol):
    def upsert_api_key(self, platform: str, ciphertext: str, iv: str, auth_tag: str) -> StoredApiKey: ...

    def list_active_api_keys(self) -> list[StoredApiKey]: ...


def normalize_platform(platform: str) -> str:
    normalized = platform.strip().lower()
    if not normalized:
        raise ValueError("Platform name must not be empty.")
    return normalized


class ApiKeyService:
    def __init__(self, store: ApiKeyRepository, vault: CipherVault) -> None:
        self._store = store
        self._vault = vault

    def set_api_key(self, platform: str, key: str) -> StoredApiKey:
        """Encrypt and upsert the key for platform; return the stored record (no plaintext)."""
        platform = normalize_platform(platform)
        sealed = self._vault.encrypt(key)
        record = self._store.upsert_api_key(platform, sealed.ciphertext, sealed.iv, sealed.auth_tag)
        logger.info("API key for %s has been set/updated", platform)
        return record

    def get_api_keys(self) -> dict[str, str]:
        """Return {platform: plaintext key} for every active key that decrypts."""
        result: dict[str, str] = {}
        for api_key in self._store.list_active_api_keys():
            try:
                result[api_key.platform] = self._vault.decrypt(api_key.ciphertext, api_key.iv, api_key.auth_tag)
            except DecryptionFailed:
                logger.error("Failed to decrypt %s key; omitting it", api_key.platform)
        return result

    def get_api_keys_status(self) -> dict[str, bool]:
        """Return which platforms have an active key, without decrypting anything."""
        status = {platform: False for platform in KNOWN_PLATFORMS}
        for api_key in self._store.list_active_api_keys():
            status[api_key.platform] = True
        return status
