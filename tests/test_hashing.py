"""Unit tests for auth/hashing.py -- lookup digests and bcrypt passwords.

Covers:
- digest() is deterministic, keyed, and hex SHA-256 sized
- new_secret() carries 256 bits and does not repeat
- hash_password() / verify_password() round trip, salted, never raises
- verify_dummy() runs without an account
"""

from auth.hashing import SecretHasher


def test_digest_is_deterministic_and_keyed(hasher):
    other = SecretHasher("another-lookup-key-with-enough-length!!", bcrypt_rounds=4)
    assert hasher.digest("sr_abc") == hasher.digest("sr_abc")
    assert hasher.digest("sr_abc") != other.digest("sr_abc")
    assert len(hasher.digest("sr_abc")) == 64


def test_digest_differs_per_input(hasher):
    assert hasher.digest("token-a") != hasher.digest("token-b")


def test_new_secret_is_url_safe_and_unique():
    secrets = {SecretHasher.new_secret() for _ in range(50)}
    assert len(secrets) == 50
    for s in secrets:
        # 32 bytes base64url without padding
        assert len(s) == 43
        assert "=" not in s and "+" not in s and "/" not in s


def test_password_round_trip(hasher):
    hashed = hasher.hash_password("correct-horse-42")
    assert hashed.startswith("$2")
    assert hasher.verify_password("correct-horse-42", hashed)
    assert not hasher.verify_password("wrong-horse-42", hashed)


def test_password_hash_is_salted(hasher):
    assert hasher.hash_password("same-password") != hasher.hash_password("same-password")


def test_verify_password_malformed_hash_returns_false(hasher):
    assert hasher.verify_password("anything", "not-a-bcrypt-hash") is False


def test_verify_dummy_returns_none(hasher):
    assert hasher.verify_dummy("whatever") is None


def test_empty_lookup_key_rejected():
    import pytest

    with pytest.raises(ValueError):
        SecretHasher("")
