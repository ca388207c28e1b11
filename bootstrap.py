"""
bootstrap.py -- Assembly of the credential engine from Settings.

This is the ONLY module that imports from both auth/ and vault/. It reads the
Settings object once and passes configuration into each component explicitly;
no component reads the environment at call time.

Startup order matters:
  1. Store first -- every other component needs it.
  2. Vault second -- fails fast with ConfigurationError on a missing or
     malformed encryption key, before any request could be served.
  3. Issuer, manager, mailer, reset flow, API-key service.

Usage (from the hosting web app's startup hook):
    services = build_services()
    setup_admin(services)          # optional, idempotent
    services.password_reset.request_reset(email, services.frontend_url)
    ...
    services.close()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from auth.mailer import ResendMailer
from auth.reset import PasswordResetFlow
from auth.service import CredentialManager, normalize_email
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings
from core.errors import ConfigurationError
from vault.cipher import CipherVault
from vault.service import ApiKeyService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("socialrunner.bootstrap")

# Values shipped in the sample .env; treated as "not configured".
_PLACEHOLDER_KEYS = {"your-youtube-api-key", "your-rapidapi-key"}


@dataclass
class Services:
    store: CredentialStore
    issuer: TokenIssuer
    credentials: CredentialManager
    password_reset: PasswordResetFlow
    api_keys: ApiKeyService
    # Base URL the boundary passes to password_reset.request_reset().
    frontend_url: str

    def close(self) -> None:
        self.store.close()


def build_services(settings: Settings | None = None) -> Services:
    """Wire every component from settings (the cached singleton by default)."""
    settings = settings or get_settings()

    store = CredentialStore(settings.database_url)
    try:
        vault = CipherVault.from_hex(settings.api_key_encryption_key)
    except ConfigurationError:
        store.close()
        raise

    issuer = TokenIssuer.from_settings(store, settings)
    credentials = CredentialManager(store, issuer, bcrypt_rounds=settings.bcrypt_rounds)
    mailer = ResendMailer(
        api_key=settings.resend_api_key,
        from_email=settings.from_email,
        timeout=settings.mail_timeout_seconds,
    )
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY is not set -- password reset emails will fail to send")
    password_reset = PasswordResetFlow(
        store,
        mailer,
        credentials,
        token_ttl=timedelta(seconds=settings.password_reset_expire_seconds),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    api_keys = ApiKeyService(store, vault)
    logger.info("Credential services initialized")
    return Services(
        store=store,
        issuer=issuer,
        credentials=credentials,
        password_reset=password_reset,
        api_keys=api_keys,
        frontend_url=settings.frontend_url,
    )


def setup_admin(services: Services, settings: Settings | None = None) -> None:
    """Create the admin account and seed platform API keys from settings.

    Safe to run on every deploy: an existing admin is left untouched, and API
    keys are only written when a real (non-placeholder) value is configured.
    """
    settings = settings or get_settings()
    if not settings.admin_email or not settings.admin_password:
        raise ConfigurationError("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

    if services.store.find_user_by_email(normalize_email(settings.admin_email)) is not None:
        logger.info("Admin user already exists")
    else:
        result = services.credentials.signup(settings.admin_email, settings.admin_password)
        # Setup issues no session; drop the refresh token signup created.
        services.credentials.logout(result.refresh_token)
        logger.info("Admin user created: user_id=%s", result.user.id)

    for platform, value in (("youtube", settings.youtube_api_key), ("rapidapi", settings.rapidapi_key)):
        if value and value not in _PLACEHOLDER_KEYS:
            services.api_keys.set_api_key(platform, value)
            logger.info("%s API key configured", platform)
        else:
            logger.info("%s API key not configured", platform)
