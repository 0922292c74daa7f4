"""
core/mailer.py -- Client for the transactional email service.

Email delivery is an external collaborator. This module only hands it a
recipient, a display name and a link; templates live on the service side.
Messages are posted as JSON to {email_api_url}/api/tx with HTTP basic auth.

When email_api_url is empty (local development) nothing is sent and a log
line records that a message was requested. Links carry single-use secrets,
so they are never logged in either mode.

The allowlist restricts recipients on staging systems: entries are exact
addresses or "@domain" suffixes, compared case-insensitively. An empty
allowlist allows everyone.

Layer rule: core/ may not import from api/, auth/, or orgs/.
"""

from __future__ import annotations

import logging
from typing import Protocol

import requests

logger = logging.getLogger("sendrec.mailer")


class EmailSender(Protocol):
    def send_password_reset(self, to_email: str, to_name: str, reset_link: str) -> None: ...

    def send_confirmation(self, to_email: str, to_name: str, confirm_link: str) -> None: ...

    def send_org_invite(self, to_email: str, org_name: str, inviter_name: str, accept_link: str) -> None: ...


class EmailClient:
    """requests-based EmailSender. Raises requests.RequestException on delivery failure."""

    def __init__(
        self,
        api_url: str = "",
        username: str = "",
        password: str = "",
        reset_template_id: int = 0,
        confirm_template_id: int = 0,
        invite_template_id: int = 0,
        allowlist: list[str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._templates = {
            "password_reset": reset_template_id,
            "confirmation": confirm_template_id,
            "org_invite": invite_template_id,
        }
        self._allowlist = [entry.lower() for entry in (allowlist or [])]
        self._timeout = timeout
        # One session per client for connection pooling.
        self._session = requests.Session()
        self._session.auth = (username, password)
        self._session.max_redirects = 3

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url)

    def is_allowed(self, recipient: str) -> bool:
        if not self._allowlist:
            return True
        lower = recipient.lower()
        for entry in self._allowlist:
            if entry.startswith("@"):
                if lower.endswith(entry):
                    return True
            elif lower == entry:
                return True
        logger.info("Email to %s blocked by allowlist", _redact(recipient))
        return False

    def send_password_reset(self, to_email: str, to_name: str, reset_link: str) -> None:
        self._send("password_reset", to_email, {"name": to_name, "resetLink": reset_link})

    def send_confirmation(self, to_email: str, to_name: str, confirm_link: str) -> None:
        self._send("confirmation", to_email, {"name": to_name, "confirmLink": confirm_link})

    def send_org_invite(self, to_email: str, org_name: str, inviter_name: str, accept_link: str) -> None:
        self._send(
            "org_invite",
            to_email,
            {"orgName": org_name, "inviterName": inviter_name, "acceptLink": accept_link},
        )

    def _send(self, kind: str, to_email: str, data: dict[str, str]) -> None:
        if not self.is_configured:
            logger.info("Email not configured -- %s requested for %s (link not logged)", kind, _redact(to_email))
            return
        if not self.is_allowed(to_email):
            return
        resp = self._session.post(
            f"{self.api_url}/api/tx",
            json={
                "subscriber_email": to_email,
                "template_id": self._templates[kind],
                "data": data,
                "content_type": "html",
            },
            timeout=self._timeout,
        )
        resp.raise_for_status()
        logger.info("Sent %s email to %s", kind, _redact(to_email))

    def close(self) -> None:
        self._session.close()


def _redact(email: str) -> str:
    """Redact an address for logs: "alice@example.com" -> "al***@example.com"."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"
