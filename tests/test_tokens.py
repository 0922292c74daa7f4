"""Unit tests for auth/tokens.py -- session token minting and verification.

Covers:
- access and refresh tokens carry sub/type/iat/exp; only refresh has jti
- expiry, wrong secret, tampering, alg "none" and alg HS512 are rejected
- expected_type enforcement and missing jti on refresh
- every failure is a 401 TokenError
"""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import (
    ExpiredToken,
    InvalidSignature,
    MalformedToken,
    MissingTokenId,
    TokenError,
    UnexpectedAlgorithm,
    WrongTokenType,
)
from auth.models import ACCESS, REFRESH
from auth.tokens import TokenMinter

SECRET = "sendrec-test-secret-key-0123456789abcdef"


@pytest.fixture
def minter() -> TokenMinter:
    return TokenMinter(SECRET)


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def test_access_token_claims(minter):
    claims = minter.verify(minter.mint_access_token("user-1"), expected_type=ACCESS)
    assert claims.user_id == "user-1"
    assert claims.token_type == ACCESS
    assert claims.token_id is None
    assert claims.expires_at - claims.issued_at == timedelta(minutes=15)


def test_refresh_token_claims(minter):
    claims = minter.verify(minter.mint_refresh_token("user-1", "abc123"), expected_type=REFRESH)
    assert claims.token_type == REFRESH
    assert claims.token_id == "abc123"
    assert claims.expires_at - claims.issued_at == timedelta(days=7)


def test_access_token_has_no_jti(minter):
    payload = jwt.get_unverified_claims(minter.mint_access_token("user-1"))
    assert "jti" not in payload
    assert payload["type"] == "access"


def test_refresh_requires_token_id(minter):
    with pytest.raises(ValueError):
        minter.mint_refresh_token("user-1", "")


def test_expired_token_rejected(minter):
    issued = datetime.now(timezone.utc) - timedelta(hours=1)
    token = minter.mint_access_token("user-1", now=issued)
    with pytest.raises(ExpiredToken):
        minter.verify(token)


def test_wrong_secret_rejected(minter):
    other = TokenMinter("a-completely-different-secret-key-xyz-123")
    with pytest.raises(InvalidSignature):
        minter.verify(other.mint_access_token("user-1"))


def test_tampered_payload_rejected(minter):
    header, _payload, signature = minter.mint_access_token("user-1").split(".")
    now = int(datetime.now(timezone.utc).timestamp())
    forged = _b64({"sub": "admin", "type": "access", "iat": now, "exp": now + 900})
    with pytest.raises(InvalidSignature):
        minter.verify(f"{header}.{forged}.{signature}")


def test_alg_none_rejected(minter):
    now = int(datetime.now(timezone.utc).timestamp())
    token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64({'sub': 'user-1', 'type': 'access', 'iat': now, 'exp': now + 900})}."
    with pytest.raises(UnexpectedAlgorithm):
        minter.verify(token)


def test_other_hmac_algorithm_rejected(minter):
    now = int(datetime.now(timezone.utc).timestamp())
    token = jwt.encode({"sub": "user-1", "type": "access", "iat": now, "exp": now + 900}, SECRET, algorithm="HS512")
    with pytest.raises(UnexpectedAlgorithm):
        minter.verify(token)


def test_garbage_rejected(minter):
    with pytest.raises(MalformedToken):
        minter.verify("not-a-jwt")


def test_refresh_token_used_as_access_rejected(minter):
    token = minter.mint_refresh_token("user-1", "abc123")
    with pytest.raises(WrongTokenType) as exc_info:
        minter.verify(token, expected_type=ACCESS)
    assert exc_info.value.message == "invalid token type"


def test_access_token_used_as_refresh_rejected(minter):
    with pytest.raises(WrongTokenType):
        minter.verify(minter.mint_access_token("user-1"), expected_type=REFRESH)


def test_refresh_without_jti_rejected(minter):
    now = int(datetime.now(timezone.utc).timestamp())
    token = jwt.encode({"sub": "user-1", "type": "refresh", "iat": now, "exp": now + 900}, SECRET, algorithm="HS256")
    with pytest.raises(MissingTokenId):
        minter.verify(token, expected_type=REFRESH)


def test_unknown_type_rejected(minter):
    now = int(datetime.now(timezone.utc).timestamp())
    token = jwt.encode({"sub": "user-1", "type": "magic", "iat": now, "exp": now + 900}, SECRET, algorithm="HS256")
    with pytest.raises(MalformedToken):
        minter.verify(token)


def test_token_errors_are_401():
    for exc_type in (MalformedToken, UnexpectedAlgorithm, InvalidSignature, ExpiredToken, WrongTokenType):
        assert issubclass(exc_type, TokenError)
        assert exc_type.status_code == 401
