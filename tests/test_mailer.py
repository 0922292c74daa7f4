"""Unit tests for core/mailer.py -- the transactional email client.

Covers:
- unconfigured client logs instead of sending, without the link
- configured client posts template id, recipient and link data with basic auth
- allowlist by exact address and by @domain
- HTTP errors surface as requests exceptions
"""

import logging
from unittest.mock import MagicMock

import pytest
import requests

from core.mailer import EmailClient


def _client(**kwargs) -> EmailClient:
    defaults = {
        "api_url": "https://mail.example.net/",
        "username": "api",
        "password": "secret",
        "reset_template_id": 11,
        "confirm_template_id": 12,
        "invite_template_id": 13,
    }
    defaults.update(kwargs)
    client = EmailClient(**defaults)
    client._session.post = MagicMock(return_value=MagicMock(raise_for_status=MagicMock()))
    return client


def test_unconfigured_client_only_logs(caplog):
    client = EmailClient()
    client._session.post = MagicMock()
    with caplog.at_level(logging.INFO, logger="sendrec.mailer"):
        client.send_password_reset("alice@example.com", "Alice", "https://app/reset-password?token=SECRET")
    client._session.post.assert_not_called()
    assert "password_reset" in caplog.text
    assert "SECRET" not in caplog.text
    assert "alice@example.com" not in caplog.text


def test_sends_confirmation():
    client = _client()
    client.send_confirmation("bob@example.com", "Bob", "https://app/confirm-email?token=abc")
    url = client._session.post.call_args.args[0]
    payload = client._session.post.call_args.kwargs["json"]
    assert url == "https://mail.example.net/api/tx"
    assert payload["subscriber_email"] == "bob@example.com"
    assert payload["template_id"] == 12
    assert payload["data"] == {"name": "Bob", "confirmLink": "https://app/confirm-email?token=abc"}
    assert client._session.auth == ("api", "secret")


def test_sends_org_invite():
    client = _client()
    client.send_org_invite("carol@example.com", "Acme", "Olive", "https://app/invites/accept?token=xyz")
    payload = client._session.post.call_args.kwargs["json"]
    assert payload["template_id"] == 13
    assert payload["data"]["orgName"] == "Acme"
    assert payload["data"]["inviterName"] == "Olive"


@pytest.mark.parametrize(
    "recipient,allowed",
    [
        ("dev@sendrec.test", True),
        ("someone@staff.example", True),
        ("SOMEONE@STAFF.EXAMPLE", True),
        ("stranger@example.com", False),
    ],
)
def test_allowlist(recipient, allowed):
    client = _client(allowlist=["dev@sendrec.test", "@staff.example"])
    client.send_password_reset(recipient, "X", "https://app/reset-password?token=t")
    assert client._session.post.called is allowed


def test_http_error_propagates():
    client = _client()
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
    client._session.post = MagicMock(return_value=response)
    with pytest.raises(requests.RequestException):
        client.send_password_reset("alice@example.com", "Alice", "https://app/reset-password?token=t")
