"""
api/main.py -- FastAPI application entry point for the SendRec identity service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

This is the only module that reads get_settings(). build_state() turns the
settings into components and hangs them on app.state; route handlers and
dependencies reach them through request.app.state. Tests call build_state()
with their own settings, database and email sender instead of running the
real lifespan.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.organizations import router as organizations_router
from api.routes.v1.user import router as user_router
from auth.accounts import AccountService, email_confirmation_flow, password_reset_flow
from auth.api_keys import ApiKeyRegistry
from auth.errors import ServiceError
from auth.hashing import SecretHasher
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenMinter
from core.config import Settings, get_settings, parse_allowlist
from core.mailer import EmailClient, EmailSender
from orgs.invites import InviteService, invite_flow
from orgs.store import OrgStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sendrec.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_state(
    app: FastAPI,
    settings: Settings,
    *,
    email_sender: Optional[EmailSender] = None,
    executor: Optional[concurrent.futures.Executor] = None,
) -> None:
    """Construct every component from settings and attach it to app.state.

    Order matters: the user store owns the engine and the shared MetaData,
    so it is created before anything that stores rows.
    """
    user_store = UserStore(db_url=settings.database_url)
    hasher = SecretHasher(settings.secret_key, bcrypt_rounds=settings.bcrypt_rounds)
    minter = TokenMinter(
        settings.secret_key,
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
    )
    sessions = SessionManager(user_store, minter, hasher)
    org_store = OrgStore(user_store.engine)

    app.state.settings = settings
    app.state.user_store = user_store
    app.state.org_store = org_store
    app.state.hasher = hasher
    app.state.minter = minter
    app.state.sessions = sessions
    app.state.accounts = AccountService(
        user_store,
        hasher,
        sessions,
        resets=password_reset_flow(
            user_store.engine, hasher, timedelta(seconds=settings.password_reset_ttl_seconds)
        ),
        confirmations=email_confirmation_flow(
            user_store.engine, hasher, timedelta(seconds=settings.email_confirmation_ttl_seconds)
        ),
    )
    app.state.invites = InviteService(
        org_store, invite_flow(user_store.engine, hasher, timedelta(seconds=settings.invite_ttl_seconds))
    )
    app.state.api_keys = ApiKeyRegistry(user_store, hasher, max_keys=settings.max_api_keys, executor=executor)
    app.state.mailer = email_sender or EmailClient(
        api_url=settings.email_api_url,
        username=settings.email_api_username,
        password=settings.email_api_password,
        reset_template_id=settings.email_reset_template_id,
        confirm_template_id=settings.email_confirm_template_id,
        invite_template_id=settings.email_invite_template_id,
        allowlist=parse_allowlist(settings.email_allowlist),
    )


def close_state(app: FastAPI) -> None:
    """Release what build_state() acquired, background work first."""
    app.state.api_keys.shutdown(wait=True)
    close_mailer = getattr(app.state.mailer, "close", None)
    if close_mailer is not None:
        close_mailer()
    app.state.user_store.close()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build components on startup; drain the API key updater and close the DB on shutdown."""
    settings = get_settings()
    logger.info("SendRec identity API starting up")
    build_state(app, settings)
    if not settings.email_api_url:
        logger.warning("EMAIL_API_URL not set -- emails will be logged, not sent")
    logger.info("Components initialized")

    yield

    close_state(app)
    logger.info("SendRec identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="SendRec Identity API",
    description="Accounts, session tokens, API keys and organization membership for SendRec.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    # The refresh cookie has to cross origins for the web client.
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Organization-Id"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(user_router, prefix="/api", tags=["User"])
app.include_router(organizations_router, prefix="/api", tags=["Organizations"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map the auth/orgs error taxonomy onto HTTP.

    401 responses carry WWW-Authenticate so clients know a bearer credential
    is expected.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    response = _error(exc.status_code, exc.error_code, exc.message, exc.detail)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly for sync routes.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a plain 400, same as every other validation failure."""
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Registered on the Starlette base class so router 404/405 responses use the envelope too."""
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Report liveness and database reachability. 503 when the database is down."""
    try:
        db_ok = request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        db_ok = False
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
