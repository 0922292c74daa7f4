"""
auth/hashing.py -- One-way hashing for passwords and high-entropy secrets.

Two algorithms, never interchanged:

  Passwords: bcrypt, used directly (no passlib wrapper). Its cost factor makes
       brute-force of low-entropy human-chosen secrets expensive. A dummy hash
       computed at construction enables timing equalization so login response
       time does not reveal whether an email is registered [C1].

  Lookup secrets: HMAC-SHA256(lookup_key, raw). Refresh session ids, reset /
       confirmation / invite tokens and API keys all carry >= 128 bits from
       `secrets`, so a fast deterministic digest is safe and lets the store do
       an O(1) indexed lookup. Keying the digest means a leaked database alone
       is not enough to test guesses offline. bcrypt here would make every
       authenticated API call pay the password cost.

Layer rule: stdlib + bcrypt only.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

import bcrypt

# bcrypt silently ignores input past this many bytes.
BCRYPT_MAX_BYTES = 72


class SecretHasher:
    """Hashing configuration fixed at startup and passed to every consumer."""

    def __init__(self, lookup_key: str, bcrypt_rounds: int = 12) -> None:
        if not lookup_key:
            raise ValueError("lookup_key must not be empty")
        self._lookup_key = lookup_key.encode("utf-8")
        self._rounds = bcrypt_rounds
        self._dummy_hash = self.hash_password("sendrec_timing_dummy")

    # ------------------------------------------------------------------
    # Lookup digests
    # ------------------------------------------------------------------

    def digest(self, raw: str) -> str:
        """Return the hex HMAC-SHA256 lookup digest of a high-entropy secret."""
        return hmac.new(self._lookup_key, raw.encode("utf-8"), hashlib.sha256).hexdigest()

    @staticmethod
    def new_secret(nbytes: int = 32) -> str:
        """Return a URL-safe random secret. 32 bytes = 256 bits of entropy."""
        return secrets.token_urlsafe(nbytes)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        """Return a salted bcrypt hash of a password.

        Callers validate length first: bcrypt rejects (4.1+) or truncates
        input longer than 72 bytes.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify_password(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the bcrypt hash. Never raises."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt comparison. Call when the account does not exist [C1]."""
        self.verify_password(plain, self._dummy_hash)
