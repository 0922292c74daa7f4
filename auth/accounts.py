"""
auth/accounts.py -- Account lifecycle: registration, login, confirmation, reset.

AccountService ties the user store, the password hasher, the refresh session
manager and two SingleUseTokenFlow instances together:

  email confirmation  24 h, one live token per user; consuming it sets
                      email_verified. Login is refused until then.
  password reset      1 h, one live token per user; consuming it sets the new
                      password AND revokes every refresh session of the user,
                      so an attacker already holding a session is logged out.

Callers own email delivery and the anti-enumeration response shape; this
module returns None / raises typed errors and never sees an HTTP request.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict, Forbidden, Unauthenticated, ValidationFailed
from auth.hashing import BCRYPT_MAX_BYTES, SecretHasher
from auth.models import TokenPair, User
from auth.sessions import SessionManager
from auth.single_use import SingleUseTokenFlow
from auth.store import UserStore, email_confirmations, password_resets

logger = logging.getLogger("sendrec.auth.accounts")

PASSWORD_MIN_LENGTH = 8
PASSWORD_RESET_TTL = timedelta(hours=1)
EMAIL_CONFIRMATION_TTL = timedelta(hours=24)


def validate_password(password: str) -> None:
    """Enforce 8-72 characters, and at most 72 bytes so bcrypt sees all of it."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationFailed(f"password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValidationFailed(f"password must be at most {BCRYPT_MAX_BYTES} characters")


def password_reset_flow(engine: Engine, hasher: SecretHasher, ttl: timedelta = PASSWORD_RESET_TTL) -> SingleUseTokenFlow:
    return SingleUseTokenFlow(
        engine,
        password_resets,
        name="password_reset",
        ttl=ttl,
        hasher=hasher,
        subject_columns=("user_id",),
        failure_message="invalid or expired reset link",
    )


def email_confirmation_flow(
    engine: Engine, hasher: SecretHasher, ttl: timedelta = EMAIL_CONFIRMATION_TTL
) -> SingleUseTokenFlow:
    return SingleUseTokenFlow(
        engine,
        email_confirmations,
        name="email_confirmation",
        ttl=ttl,
        hasher=hasher,
        subject_columns=("user_id",),
        failure_message="invalid or expired confirmation link",
    )


@dataclass
class PendingEmail:
    """A freshly issued single-use secret and who should receive it."""

    user: User
    raw_token: str


class EmailNotVerified(Forbidden):
    error_code = "email_not_verified"


class AccountService:
    def __init__(
        self,
        store: UserStore,
        hasher: SecretHasher,
        sessions: SessionManager,
        resets: SingleUseTokenFlow,
        confirmations: SingleUseTokenFlow,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.sessions = sessions
        self.resets = resets
        self.confirmations = confirmations

    # ------------------------------------------------------------------
    # Registration and confirmation
    # ------------------------------------------------------------------

    def register(self, email: str, password: str, name: str) -> PendingEmail:
        """Create an unverified account and issue its confirmation token.

        Raises Conflict if the email is taken. The message does not echo the
        address.
        """
        validate_password(password)
        try:
            user_id = self.store.create_user(
                User(email=email, name=name, hashed_password=self.hasher.hash_password(password))
            )
        except IntegrityError as exc:
            raise Conflict("could not create account") from exc
        user = self.store.get_by_id(user_id)
        logger.info("Registered user %s", user_id)
        return PendingEmail(user=user, raw_token=self.confirmations.issue({"user_id": user_id}))

    def resend_confirmation(self, email: str) -> PendingEmail | None:
        """Issue a fresh confirmation token, or None if there is nothing to confirm."""
        user = self.store.get_by_email(email)
        if user is None or user.email_verified:
            return None
        return PendingEmail(user=user, raw_token=self.confirmations.issue({"user_id": user.id}))

    def confirm_email(self, raw_token: str) -> str:
        """Consume a confirmation token and mark the email verified. Returns the user id."""
        record = self.confirmations.consume(
            raw_token,
            on_consumed=lambda rec: self.store.update_user(rec["user_id"], email_verified=True),
        )
        return record["user_id"]

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> User:
        """Check credentials with timing equalization [C1].

        Unknown email and wrong password raise the same Unauthenticated error
        and cost one bcrypt comparison each. A correct password on an
        unverified account raises EmailNotVerified (403).
        """
        user = self.store.get_by_email(email)
        if user is None:
            self.hasher.verify_dummy(password)
            raise Unauthenticated("invalid email or password", code="bad_credentials")
        if not self.hasher.verify_password(password, user.hashed_password):
            raise Unauthenticated("invalid email or password", code="bad_credentials")
        if not user.email_verified:
            raise EmailNotVerified("email address not verified")
        return user

    def login(self, email: str, password: str) -> TokenPair:
        user = self.authenticate(email, password)
        return self.sessions.issue(user.id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def start_password_reset(self, email: str) -> PendingEmail | None:
        """Issue a reset token, or None if no account uses this email."""
        user = self.store.get_by_email(email)
        if user is None:
            return None
        return PendingEmail(user=user, raw_token=self.resets.issue({"user_id": user.id}))

    def reset_password(self, raw_token: str, new_password: str) -> str:
        """Consume a reset token, set the password, revoke all refresh sessions.

        The password is validated before the token is touched so a rejected
        password does not burn the link.
        """
        validate_password(new_password)
        hashed = self.hasher.hash_password(new_password)

        def apply(record: dict) -> None:
            self.store.update_user(record["user_id"], hashed_password=hashed)
            self.sessions.revoke_all(record["user_id"])

        record = self.resets.consume(raw_token, on_consumed=apply)
        logger.info("Password reset completed for user %s", record["user_id"])
        return record["user_id"]

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not current_password:
            raise ValidationFailed("current password is required to set a new password")
        validate_password(new_password)
        if not self.hasher.verify_password(current_password, user.hashed_password):
            raise Unauthenticated("current password is incorrect", code="bad_credentials")
        self.store.update_user(user.id, hashed_password=self.hasher.hash_password(new_password))
