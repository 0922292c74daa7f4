"""
api/limiter.py -- Shared slowapi rate limiter and the per-route limit values.

One shared instance so every route counts against the same in-memory store;
api/main.py mounts it as middleware and the auth routes decorate with it.

Limit values are read from Settings when a request is evaluated, so an
operator can tune them through the environment without code changes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def register_limit() -> str:
    return get_settings().register_rate_limit


def recovery_limit() -> str:
    """Forgot-password and resend-confirmation, which trigger outbound email."""
    return get_settings().recovery_rate_limit
