"""Unit tests for auth/accounts.py -- account lifecycle service.

Covers:
- register() creates an unverified account and a confirmation token
- duplicate email (any case) is a Conflict
- login refuses unverified accounts with email_not_verified, then succeeds
- unknown email and wrong password fail identically
- password reset sets the password, revokes every session, works once
- a rejected new password does not burn the reset link
- change_password() requires the current password
"""

import pytest

from auth.accounts import AccountService, EmailNotVerified, email_confirmation_flow, password_reset_flow
from auth.errors import Conflict, InvalidOrExpiredToken, Unauthenticated, ValidationFailed
from auth.sessions import SessionManager
from auth.tokens import TokenMinter
from conftest import DEFAULT_PASSWORD, TEST_SECRET


@pytest.fixture
def sessions(user_store, hasher):
    return SessionManager(user_store, TokenMinter(TEST_SECRET), hasher)


@pytest.fixture
def accounts(user_store, hasher, sessions):
    return AccountService(
        user_store,
        hasher,
        sessions,
        resets=password_reset_flow(user_store.engine, hasher),
        confirmations=email_confirmation_flow(user_store.engine, hasher),
    )


def test_register_creates_unverified_account(accounts):
    pending = accounts.register("Alice@Example.com", DEFAULT_PASSWORD, "Alice")
    assert pending.user.email == "alice@example.com"
    assert pending.user.email_verified is False
    assert pending.raw_token


def test_register_duplicate_email_conflicts(accounts):
    accounts.register("alice@example.com", DEFAULT_PASSWORD, "Alice")
    with pytest.raises(Conflict) as exc_info:
        accounts.register("ALICE@example.com", DEFAULT_PASSWORD, "Other")
    assert "alice" not in exc_info.value.message


@pytest.mark.parametrize("password", ["short", "x" * 73, "é" * 40])
def test_register_rejects_bad_passwords(accounts, password):
    with pytest.raises(ValidationFailed):
        accounts.register("bob@example.com", password, "Bob")


def test_login_requires_confirmed_email(accounts):
    pending = accounts.register("alice@example.com", DEFAULT_PASSWORD, "Alice")
    with pytest.raises(EmailNotVerified) as exc_info:
        accounts.login("alice@example.com", DEFAULT_PASSWORD)
    assert exc_info.value.status_code == 403
    assert exc_info.value.error_code == "email_not_verified"

    assert accounts.confirm_email(pending.raw_token) == pending.user.id
    pair = accounts.login("ALICE@example.com", DEFAULT_PASSWORD)
    assert pair.access_token and pair.refresh_token


def test_confirmation_link_is_single_use(accounts):
    pending = accounts.register("alice@example.com", DEFAULT_PASSWORD, "Alice")
    accounts.confirm_email(pending.raw_token)
    with pytest.raises(InvalidOrExpiredToken):
        accounts.confirm_email(pending.raw_token)


def test_unknown_email_and_wrong_password_look_alike(accounts, make_user):
    make_user("alice@example.com")
    with pytest.raises(Unauthenticated) as unknown:
        accounts.login("nobody@example.com", DEFAULT_PASSWORD)
    with pytest.raises(Unauthenticated) as wrong:
        accounts.login("alice@example.com", "wrong-password")
    assert unknown.value.message == wrong.value.message
    assert unknown.value.error_code == wrong.value.error_code


def test_wrong_password_on_unverified_account_is_401(accounts, make_user):
    make_user("alice@example.com", verified=False)
    with pytest.raises(Unauthenticated):
        accounts.login("alice@example.com", "wrong-password")


def test_resend_confirmation(accounts, make_user):
    make_user("verified@example.com")
    assert accounts.resend_confirmation("verified@example.com") is None
    assert accounts.resend_confirmation("nobody@example.com") is None

    first = accounts.register("alice@example.com", DEFAULT_PASSWORD, "Alice")
    second = accounts.resend_confirmation("alice@example.com")
    with pytest.raises(InvalidOrExpiredToken):
        accounts.confirm_email(first.raw_token)
    accounts.confirm_email(second.raw_token)


def test_password_reset_revokes_sessions(accounts, sessions, make_user):
    user = make_user("alice@example.com")
    pair = accounts.login("alice@example.com", DEFAULT_PASSWORD)

    pending = accounts.start_password_reset("alice@example.com")
    assert pending.user.id == user.id
    accounts.reset_password(pending.raw_token, "brand-new-pass-1")

    with pytest.raises(Unauthenticated):
        sessions.rotate(pair.refresh_token)
    with pytest.raises(Unauthenticated):
        accounts.login("alice@example.com", DEFAULT_PASSWORD)
    accounts.login("alice@example.com", "brand-new-pass-1")
    with pytest.raises(InvalidOrExpiredToken):
        accounts.reset_password(pending.raw_token, "another-pass-22")


def test_start_password_reset_unknown_email(accounts):
    assert accounts.start_password_reset("nobody@example.com") is None


def test_invalid_new_password_keeps_reset_link(accounts, make_user):
    make_user("alice@example.com")
    pending = accounts.start_password_reset("alice@example.com")
    with pytest.raises(ValidationFailed):
        accounts.reset_password(pending.raw_token, "short")
    accounts.reset_password(pending.raw_token, "long-enough-now")


def test_change_password(accounts, make_user, user_store, hasher):
    user = make_user("alice@example.com")
    with pytest.raises(ValidationFailed):
        accounts.change_password(user, "", "new-password-1")
    with pytest.raises(Unauthenticated):
        accounts.change_password(user, "wrong-current", "new-password-1")
    accounts.change_password(user, DEFAULT_PASSWORD, "new-password-1")
    assert hasher.verify_password("new-password-1", user_store.get_by_id(user.id).hashed_password)
