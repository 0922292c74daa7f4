"""
api/routes/v1/auth.py -- Registration, login and session endpoints.

Routes:
  POST /api/auth/register             -- create unverified account, email confirmation link
  POST /api/auth/login                -- password login; access token + refresh cookie
  POST /api/auth/refresh              -- rotate the refresh cookie, new access token
  POST /api/auth/logout               -- revoke the refresh session, clear cookie; 204
  POST /api/auth/forgot-password      -- email a reset link; always 200
  POST /api/auth/reset-password       -- consume reset link, set password, revoke sessions
  POST /api/auth/confirm-email        -- consume confirmation link
  POST /api/auth/resend-confirmation  -- email a new confirmation link; always 200

Security:
  [H2] login, register and the two email-sending endpoints are rate-limited per IP.
  [C1] AccountService.authenticate() provides timing equalization -- never inline
       get_by_email() + verify_password().
  [M5] Cache-Control: no-store on every response that carries a token.
  Anti-enumeration: forgot-password and resend-confirmation answer the same
  message whether or not the account exists, and email failures are logged
  only, never surfaced.
"""

from __future__ import annotations

import logging

import requests
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, recovery_limit, register_limit
from api.models import (
    ConfirmEmailRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResendConfirmationRequest,
    ResetPasswordRequest,
    TokenResponse,
)
from auth.accounts import AccountService, PendingEmail
from auth.errors import Unauthenticated
from auth.models import TokenPair
from auth.sessions import LEGACY_REFRESH_COOKIE_PATH, REFRESH_COOKIE, REFRESH_COOKIE_PATH, SessionManager
from core.mailer import EmailSender

logger = logging.getLogger("sendrec.api.auth")

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we've sent a password reset link"
RESEND_CONFIRMATION_MESSAGE = "If an unverified account with that email exists, we've sent a confirmation link"

# Auth policy: every route here is public. The refresh and logout routes
# authenticate with the refresh cookie, not the Authorization header.
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response: Response, request: Request, pair: TokenPair) -> None:
    """Set the refresh cookie and expire any copy left on the legacy path."""
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        max_age=pair.refresh_expires_in,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=request.app.state.settings.secure_cookies,
        samesite="strict",
    )
    response.delete_cookie(REFRESH_COOKIE, path=LEGACY_REFRESH_COOKIE_PATH)


def clear_refresh_cookies(response: Response, request: Request) -> None:
    secure = request.app.state.settings.secure_cookies
    for path in (REFRESH_COOKIE_PATH, LEGACY_REFRESH_COOKIE_PATH):
        response.delete_cookie(REFRESH_COOKIE, path=path, httponly=True, secure=secure, samesite="strict")


def _token_response(request: Request, pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        content=TokenResponse(access_token=pair.access_token, expires_in=pair.access_expires_in).model_dump()
    )
    set_refresh_cookie(resp, request, pair)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def link(request: Request, path: str, raw_token: str) -> str:
    return f"{request.app.state.settings.base_url.rstrip('/')}{path}?token={raw_token}"


def send_confirmation(request: Request, pending: PendingEmail) -> None:
    mailer: EmailSender = request.app.state.mailer
    try:
        mailer.send_confirmation(
            pending.user.email, pending.user.name, link(request, "/confirm-email", pending.raw_token)
        )
    except requests.RequestException:
        logger.exception("Failed to send confirmation email for user %s", pending.user.id)


def send_password_reset(request: Request, pending: PendingEmail) -> None:
    mailer: EmailSender = request.app.state.mailer
    try:
        mailer.send_password_reset(
            pending.user.email, pending.user.name, link(request, "/reset-password", pending.raw_token)
        )
    except requests.RequestException:
        logger.exception("Failed to send password reset email for user %s", pending.user.id)


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MessageResponse, status_code=201)
@limiter.limit(register_limit)  # [H2] BELOW @router so the slowapi wrapper is the registered endpoint
def register(request: Request, body: RegisterRequest) -> MessageResponse:
    """Create an account and send its confirmation link.

    The account cannot log in until the email is confirmed.
    """
    accounts: AccountService = request.app.state.accounts
    pending = accounts.register(body.email, body.password, body.name)
    send_confirmation(request, pending)
    return MessageResponse(message="Account created. Check your email to confirm your address.")


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(login_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange email and password for an access token and refresh cookie.

    Wrong email and wrong password produce the same 401. A correct password
    on an unconfirmed account gets 403 with code "email_not_verified" so the
    client can offer to resend the link.
    """
    accounts: AccountService = request.app.state.accounts
    pair = accounts.login(body.email, body.password)
    return _token_response(request, pair)


# ---------------------------------------------------------------------------
# Refresh cookie
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request) -> JSONResponse:
    """Rotate the refresh session: the presented cookie stops working."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise Unauthenticated("refresh token not found")
    sessions: SessionManager = request.app.state.sessions
    pair = sessions.rotate(token)
    return _token_response(request, pair)


@router.post("/auth/logout", status_code=204)
def logout(request: Request) -> Response:
    """Revoke the cookie's session if there is one. Always 204."""
    sessions: SessionManager = request.app.state.sessions
    sessions.logout(request.cookies.get(REFRESH_COOKIE))
    resp = Response(status_code=204)
    clear_refresh_cookies(resp, request)
    return resp


# ---------------------------------------------------------------------------
# Password reset and email confirmation
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(recovery_limit)  # [H2]
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    accounts: AccountService = request.app.state.accounts
    pending = accounts.start_password_reset(body.email)
    if pending is not None:
        send_password_reset(request, pending)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password from a reset link. Signs the user out everywhere."""
    accounts: AccountService = request.app.state.accounts
    accounts.reset_password(body.token, body.password)
    return MessageResponse(message="Password updated successfully")


@router.post("/auth/confirm-email", response_model=MessageResponse)
def confirm_email(request: Request, body: ConfirmEmailRequest) -> MessageResponse:
    accounts: AccountService = request.app.state.accounts
    accounts.confirm_email(body.token)
    return MessageResponse(message="Email confirmed successfully. You can now sign in.")


@router.post("/auth/resend-confirmation", response_model=MessageResponse)
@limiter.limit(recovery_limit)  # [H2]
def resend_confirmation(request: Request, body: ResendConfirmationRequest) -> MessageResponse:
    accounts: AccountService = request.app.state.accounts
    pending = accounts.resend_confirmation(body.email)
    if pending is not None:
        send_confirmation(request, pending)
    return MessageResponse(message=RESEND_CONFIRMATION_MESSAGE)
