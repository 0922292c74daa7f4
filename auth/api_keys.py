"""
auth/api_keys.py -- API key registry.

Keys look like "sr_" + 64 hex chars (32 random bytes, 256 bits of entropy).
Only the lookup digest is stored; the raw key is returned once by generate().

lookup() rejects anything without the prefix before touching the store, then
resolves the digest to a user id. The last_used_at stamp is a monitoring aid,
not a security control, so it is fire-and-forget: submitted to a small thread
pool, unsynchronized with concurrent uses of the same key, logged on failure
and never retried. It can never fail or slow the request that used the key.

Layer rule: no imports from api/ or orgs/.
"""

from __future__ import annotations

import concurrent.futures
import logging
import secrets

from auth.errors import Unauthenticated, ValidationFailed
from auth.hashing import SecretHasher
from auth.models import ApiKey
from auth.store import UserStore

logger = logging.getLogger("sendrec.auth.api_keys")

API_KEY_PREFIX = "sr_"
API_KEY_RANDOM_BYTES = 32
API_KEY_LENGTH = len(API_KEY_PREFIX) + 2 * API_KEY_RANDOM_BYTES
MAX_API_KEYS = 10
DISPLAY_PREFIX_LENGTH = 12


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(API_KEY_RANDOM_BYTES)}"


class ApiKeyRegistry:
    def __init__(
        self,
        store: UserStore,
        hasher: SecretHasher,
        max_keys: int = MAX_API_KEYS,
        executor: concurrent.futures.Executor | None = None,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self.max_keys = max_keys
        self._owns_executor = executor is None
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="api-key-touch"
        )

    def generate(self, user_id: str, name: str) -> tuple[ApiKey, str]:
        """Create a key for user_id. Returns (record, raw_key); raw_key is shown once.

        [H3] Caps each user at max_keys keys. The check and the insert are not
        atomic; two concurrent creations at max_keys - 1 can end one over.
        """
        if self._store.count_api_keys(user_id) >= self.max_keys:
            raise ValidationFailed(
                f"Maximum of {self.max_keys} API keys per user. Delete an existing key first.",
                code="key_limit_reached",
            )
        raw_key = generate_api_key()
        api_key = self._store.create_api_key(
            ApiKey(
                user_id=user_id,
                name=name,
                key_hash=self._hasher.digest(raw_key),
                key_prefix=raw_key[:DISPLAY_PREFIX_LENGTH],
            )
        )
        logger.info("API key %s created for user %s", api_key.id, user_id)
        return api_key, raw_key

    def list(self, user_id: str) -> list[ApiKey]:
        return self._store.get_api_keys(user_id)

    def delete(self, user_id: str, key_id: str) -> bool:
        """Delete one of user_id's keys. False means not found (or not theirs)."""
        return self._store.delete_api_key(key_id, user_id)

    def lookup(self, raw_key: str) -> str:
        """Resolve a raw key to its owner's user id, or raise Unauthenticated."""
        if not raw_key.startswith(API_KEY_PREFIX):
            raise Unauthenticated("invalid API key")
        key_hash = self._hasher.digest(raw_key)
        api_key = self._store.get_api_key_by_hash(key_hash)
        if api_key is None:
            raise Unauthenticated("invalid API key")
        self._touch_later(key_hash)
        return api_key.user_id

    def _touch_later(self, key_hash: str) -> None:
        try:
            future = self._executor.submit(self._store.touch_api_key, key_hash)
        except RuntimeError:
            # Executor already shut down (app stopping).
            logger.warning("Skipped API key last_used_at update: executor is shut down")
            return
        future.add_done_callback(_log_touch_failure)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)


def _log_touch_failure(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Failed to update API key last_used_at: %s", exc)
