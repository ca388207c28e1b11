"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly. Components never import get_settings() either:
bootstrap.build_services() reads the Settings object once and passes key
material, lifetimes and the database URL into each constructor, so tests can
build components with injected values and no environment at all.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation of the two JWT
      signing secrets once every field is resolved.

Secrets:
  JWT_ACCESS_SECRET / JWT_REFRESH_SECRET sign the two token classes. They must
  differ so a refresh token can never verify as an access token. Dev mode
  (DEBUG=true) generates random ones with a warning; production mode refuses
  to start without them. Anything shorter than 32 chars is rejected.

  API_KEY_ENCRYPTION_KEY is 64 hex chars (32 bytes) for the AES-256-GCM vault.
  It is deliberately NOT auto-generated in dev mode: a random key would make
  every stored API key undecryptable after a restart. vault.cipher.CipherVault
  validates it at construction and raises ConfigurationError.

Layer rule: core/ is the kernel. This module may not import from auth/ or vault/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("socialrunner.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent.parent / 'socialrunner_auth.db'}"

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true for the secrets).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    password_reset_expire_seconds: int = 3600
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # API key vault
    # ------------------------------------------------------------------

    api_key_encryption_key: str = ""

    # ------------------------------------------------------------------
    # Password reset mail
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:5173"
    resend_api_key: str = ""
    from_email: str = "Social Runner <onboarding@resend.dev>"
    mail_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Admin bootstrap (bootstrap.setup_admin)
    # ------------------------------------------------------------------

    admin_email: str = ""
    admin_password: str = ""
    youtube_api_key: str = ""
    rapidapi_key: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): generate any missing secret with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject short secrets and reject a refresh secret equal to
            the access secret.
        """
        for field_name in ("jwt_access_secret", "jwt_refresh_secret"):
            if getattr(self, field_name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{field_name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field_name, secrets.token_hex(32))
            logger.warning(
                "Using auto-generated %s. Sessions will not persist across restarts.", field_name.upper()
            )
        if len(self.jwt_access_secret) < _MIN_SECRET_LENGTH or len(self.jwt_refresh_secret) < _MIN_SECRET_LENGTH:
            raise ValueError(f"JWT signing secrets must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or construct Settings(...)
    directly and hand it to bootstrap.build_services().
    """
    return Settings()
