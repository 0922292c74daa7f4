"""
auth/errors.py -- Error taxonomy for the identity subsystem.

Every failure a component can report is a ServiceError subclass carrying an
HTTP status_code and a stable machine-readable error_code. api/main.py maps
any ServiceError to the standard {"error": {...}} envelope, so components and
route handlers raise these instead of building responses.

  validation       400  malformed input, broken business invariant
  unauthenticated  401  missing/invalid/expired/wrong-type credential
  forbidden        403  authenticated but insufficient role or ownership
  not_found        404  resource absent, or access would leak existence
  conflict         409  duplicate resource
  internal         500  store or crypto failure

Token verification failures all share status 401; only the message differs.

Layer rule: stdlib only.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for exceptions that map to an HTTP error response."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, *, code: str | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.error_code = code
        self.detail = detail


class ValidationFailed(ServiceError):
    status_code = 400
    error_code = "validation_error"


class Unauthenticated(ServiceError):
    status_code = 401
    error_code = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    error_code = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    error_code = "not_found"


class Conflict(ServiceError):
    status_code = 409
    error_code = "conflict"


class InternalError(ServiceError):
    pass


class InvalidOrExpiredToken(ValidationFailed):
    """A single-use secret that is unknown, already consumed, or past expiry."""

    error_code = "invalid_or_expired"


# ---------------------------------------------------------------------------
# Session token verification
# ---------------------------------------------------------------------------


class TokenError(Unauthenticated):
    error_code = "invalid_token"


class MalformedToken(TokenError):
    pass


class UnexpectedAlgorithm(TokenError):
    pass


class InvalidSignature(TokenError):
    pass


class ExpiredToken(TokenError):
    error_code = "token_expired"


class WrongTokenType(TokenError):
    error_code = "invalid_token_type"


class MissingTokenId(TokenError):
    pass
