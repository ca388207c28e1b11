"""
auth/mailer.py -- Outbound mail collaborator for the password reset flow.

Mailer is the contract the reset flow depends on; ResendMailer is the
production implementation over the Resend HTTP API (https://resend.com/docs).

Failure model:
  Every transport error, timeout, or non-2xx response raises DeliveryFailed.
  Nothing is retried here -- retry policy belongs to the caller. The request
  is always time-bounded (requests timeout=), so a hung mail provider cannot
  stall a reset request indefinitely.

  Log lines carry the provider error but never the reset token or reset URL.

Layer rule: no imports from vault/ or bootstrap. Import from core/ is allowed.
"""

from __future__ import annotations

import html
import logging
from typing import Protocol

import requests

from core.errors import DeliveryFailed

logger = logging.getLogger("socialrunner.auth.mailer")

RESEND_API_URL = "https://api.resend.com/emails"

_SUBJECT = "Reset Your Social Runner Password"

_HTML_TEMPLATE = """\
<!DOCTYPE html>
<html>
  <body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; padding: 40px 20px;">
    <h1>Password Reset Request</h1>
    <p>We received a request to reset the password for your Social Runner account.
       Use the link below to choose a new password.</p>
    <p><a href="{url}">Reset Password</a></p>
    <p>This link will expire in 1 hour. If you didn't request a password reset,
       you can safely ignore this email.</p>
  </body>
</html>
"""


class Mailer(Protocol):
    def send_password_reset_email(self, recipient: str, token: str, reset_url: str) -> None:
        """Deliver the reset link to recipient. Raises DeliveryFailed on any failure."""
        ...


class ResendMailer:
    """Sends password reset mail through Resend.

    One requests.Session per mailer gives connection pooling across calls.
    max_redirects is kept low because the endpoint is a fixed, known API.
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._timeout = timeout
        if session is None:
            session = requests.Session()
            session.max_redirects = 3
        self._session = session

    def send_password_reset_email(self, recipient: str, token: str, reset_url: str) -> None:
        if not self._api_key:
            logger.error("Password reset email not sent: RESEND_API_KEY is not configured")
            raise DeliveryFailed()
        payload = {
            "from": self._from_email,
            "to": [recipient],
            "subject": _SUBJECT,
            "html": _HTML_TEMPLATE.format(url=html.escape(reset_url, quote=True)),
        }
        try:
            resp = self._session.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Password reset email delivery failed: %s", type(exc).__name__)
            raise DeliveryFailed() from exc
        logger.info("Password reset email accepted by provider")
