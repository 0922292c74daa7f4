"""Unit tests for auth/api_keys.py -- API key registry.

Covers:
- key format: "sr_" + 64 hex chars, 67 total, display prefix of 12
- only the digest is stored
- cap of max_keys per user, code key_limit_reached
- lookup() resolves to the owner, rejects unknown and unprefixed keys
- lookup() stamps last_used_at; a failing stamp never fails the lookup
- delete() is ownership-scoped
"""

import concurrent.futures
import logging
import re

import pytest

from auth.api_keys import API_KEY_LENGTH, ApiKeyRegistry, generate_api_key
from auth.errors import Unauthenticated, ValidationFailed
from conftest import InlineExecutor


@pytest.fixture
def registry(user_store, hasher):
    return ApiKeyRegistry(user_store, hasher, max_keys=3, executor=InlineExecutor())


def test_generate_api_key_format():
    key = generate_api_key()
    assert API_KEY_LENGTH == 67
    assert len(key) == 67
    assert re.fullmatch(r"sr_[0-9a-f]{64}", key)
    assert generate_api_key() != key


def test_generate_stores_digest_and_prefix(registry, user_store, hasher):
    key, raw = registry.generate("u1", "CI")
    assert key.id
    assert key.created_at
    assert key.key_prefix == raw[:12]
    stored = user_store.get_api_key_by_hash(hasher.digest(raw))
    assert stored.id == key.id
    assert stored.key_hash != raw


def test_cap_enforced(registry):
    for i in range(3):
        registry.generate("u1", f"key {i}")
    with pytest.raises(ValidationFailed) as exc_info:
        registry.generate("u1", "one too many")
    assert exc_info.value.error_code == "key_limit_reached"
    # Another user is unaffected.
    registry.generate("u2", "mine")


def test_lookup_resolves_owner(registry):
    _, raw = registry.generate("u1", "CI")
    assert registry.lookup(raw) == "u1"


@pytest.mark.parametrize("raw", ["sr_" + "0" * 64, "not-a-key", ""])
def test_lookup_rejects_unknown(registry, raw):
    with pytest.raises(Unauthenticated) as exc_info:
        registry.lookup(raw)
    assert exc_info.value.message == "invalid API key"


def test_lookup_rejects_unprefixed_without_store(user_store, hasher):
    class ExplodingStore:
        def get_api_key_by_hash(self, key_hash):
            raise AssertionError("store must not be consulted")

    registry = ApiKeyRegistry(ExplodingStore(), hasher, executor=InlineExecutor())
    with pytest.raises(Unauthenticated):
        registry.lookup("xx_" + "0" * 64)


def test_lookup_stamps_last_used(registry):
    key, raw = registry.generate("u1", "CI")
    assert registry.list("u1")[0].last_used_at is None
    registry.lookup(raw)
    assert registry.list("u1")[0].last_used_at is not None


def test_failed_stamp_is_logged_not_raised(user_store, hasher, caplog):
    registry = ApiKeyRegistry(user_store, hasher, executor=InlineExecutor())
    _, raw = registry.generate("u1", "CI")

    def broken_touch(key_hash):
        raise RuntimeError("db down")

    user_store.touch_api_key = broken_touch
    with caplog.at_level(logging.ERROR, logger="sendrec.auth.api_keys"):
        assert registry.lookup(raw) == "u1"
    assert "last_used_at" in caplog.text


def test_lookup_after_shutdown_still_resolves(user_store, hasher):
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    registry = ApiKeyRegistry(user_store, hasher, executor=executor)
    _, raw = registry.generate("u1", "CI")
    executor.shutdown(wait=True)
    assert registry.lookup(raw) == "u1"


def test_list_newest_first_and_delete_scoped(registry):
    first, _ = registry.generate("u1", "first")
    second, _ = registry.generate("u1", "second")
    assert [k.name for k in registry.list("u1")] == ["second", "first"]
    assert registry.delete("u2", first.id) is False
    assert registry.delete("u1", first.id) is True
    assert registry.delete("u1", first.id) is False
    assert [k.id for k in registry.list("u1")] == [second.id]
