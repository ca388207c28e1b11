"""
tests/conftest.py -- Shared fixtures for the credential engine tests.

This module provides:
  - store: an isolated in-memory CredentialStore per test
  - issuer / manager / reset_flow / api_keys: components wired the way
    bootstrap.build_services() wires them, but with injected secrets
  - RecordingMailer / FailingMailer: mail collaborators that never touch
    the network
  - registered_user: a signed-up account with one open session
  - file_store + race(): a file-backed store and a barrier-synchronized
    thread runner for the concurrent redemption tests

Design: plain sqlite:///:memory: serves the single-threaded tests -- every
engine gets its own private database, so tests never share state. Races are
exercised on file_store, which has real per-thread connections and locking
like the production default.

bcrypt rounds are lowered to 4 in fixtures. Cost 12 is the production
default (asserted in test_tokens.py); running it on every signup would make
the suite needlessly slow.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from auth.models import AuthResult
from auth.reset import PasswordResetFlow
from auth.service import CredentialManager
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from core.errors import CredentialError, DeliveryFailed
from vault.cipher import CipherVault
from vault.service import ApiKeyService

# Fixed (not random) so test modules importing these names agree with the
# fixtures even if conftest ends up imported under two module names.
ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef0123456789"
TEST_BCRYPT_ROUNDS = 4

USER_EMAIL = "user@site.com"
USER_PASSWORD = "correct-horse-battery"
RESET_BASE_URL = "https://app.example.com"


# ---------------------------------------------------------------------------
# Mail collaborators
# ---------------------------------------------------------------------------


class RecordingMailer:
    """Captures every reset email instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_password_reset_email(self, recipient: str, token: str, reset_url: str) -> None:
        self.sent.append((recipient, token, reset_url))


class FailingMailer:
    def send_password_reset_email(self, recipient: str, token: str, reset_url: str) -> None:
        raise DeliveryFailed()


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    s = CredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def issuer(store: CredentialStore) -> TokenIssuer:
    return TokenIssuer(store, ACCESS_SECRET, REFRESH_SECRET)


@pytest.fixture
def manager(store: CredentialStore, issuer: TokenIssuer) -> CredentialManager:
    return CredentialManager(store, issuer, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def reset_flow(store: CredentialStore, mailer: RecordingMailer, manager: CredentialManager) -> PasswordResetFlow:
    return PasswordResetFlow(store, mailer, manager, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def vault() -> CipherVault:
    return CipherVault(os.urandom(32))


@pytest.fixture
def api_keys(store: CredentialStore, vault: CipherVault) -> ApiKeyService:
    return ApiKeyService(store, vault)


@pytest.fixture
def registered_user(manager: CredentialManager) -> AuthResult:
    """Sign up USER_EMAIL / USER_PASSWORD and return the signup result."""
    return manager.signup(USER_EMAIL, USER_PASSWORD, name="Site User")


@pytest.fixture
def file_store(tmp_path: Path) -> Generator[CredentialStore, None, None]:
    """A WAL-mode SQLite file store; threads get their own pooled connections."""
    s = CredentialStore(f"sqlite:///{tmp_path / 'credentials.db'}")
    yield s
    s.close()


# ---------------------------------------------------------------------------
# Concurrency helper
# ---------------------------------------------------------------------------


def race(workers: int, action: Callable[[int], object]) -> list[str]:
    """Release `workers` threads at once into action(i); return one outcome each.

    Outcomes are "ok" or the exception class name, so an unexpected
    infrastructure error (e.g. OperationalError) shows up in the assertion.
    """
    barrier = threading.Barrier(workers)
    outcomes: list[str] = []
    lock = threading.Lock()

    def run(index: int) -> None:
        barrier.wait()
        try:
            action(index)
            outcome = "ok"
        except CredentialError as exc:
            outcome = type(exc).__name__
        except Exception as exc:  # recorded so the test reports it
            outcome = f"unexpected:{type(exc).__name__}"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes
