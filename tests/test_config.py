"""Unit tests for core/config.py -- Settings validation and helpers."""

import pytest
from pydantic import ValidationError

from core.config import Settings, parse_allowlist


def test_debug_generates_secret_key():
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key():
    with pytest.raises(ValidationError):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected():
    with pytest.raises(ValidationError):
        Settings(debug=True, secret_key="too-short")


def test_bcrypt_rounds_bounds():
    with pytest.raises(ValidationError):
        Settings(debug=True, bcrypt_rounds=3)


def test_defaults_match_token_lifetimes():
    settings = Settings(debug=True)
    assert settings.access_token_ttl_seconds == 15 * 60
    assert settings.refresh_token_ttl_seconds == 7 * 24 * 3600
    assert settings.password_reset_ttl_seconds == 3600
    assert settings.email_confirmation_ttl_seconds == 24 * 3600
    assert settings.invite_ttl_seconds == 7 * 24 * 3600
    assert settings.max_api_keys == 10
    assert settings.secure_cookies is True


def test_parse_allowlist():
    assert parse_allowlist("") == []
    assert parse_allowlist(" a@b.com, @example.com ,,") == ["a@b.com", "@example.com"]


def test_default_allowed_hosts_are_local_only(monkeypatch):
    # conftest.py widens the list for TestClient through the environment.
    monkeypatch.delenv("ALLOWED_HOSTS", raising=False)
    settings = Settings(debug=True)
    assert settings.allowed_hosts == ["localhost", "127.0.0.1", "*.localhost"]
    assert "testserver" not in settings.allowed_hosts
