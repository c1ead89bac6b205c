"""Unit tests for auth/passwords.py -- bcrypt hashing and verification.

Covers:
- hash_password() produces a salted bcrypt digest that verifies
- verify_password() rejects wrong passwords and malformed digests
- make_dummy_hash() uses the requested cost factor
"""

from auth.passwords import hash_password, make_dummy_hash, verify_password


def test_hash_verifies_with_correct_password():
    digest = hash_password("correct-secret", rounds=4)
    assert digest.startswith("$2")
    assert verify_password("correct-secret", digest) is True


def test_hash_rejects_wrong_password():
    digest = hash_password("correct-secret", rounds=4)
    assert verify_password("wrong-secret", digest) is False


def test_same_password_hashes_differently():
    """Each digest carries its own salt."""
    assert hash_password("correct-secret", rounds=4) != hash_password("correct-secret", rounds=4)


def test_malformed_digest_is_a_mismatch():
    assert verify_password("correct-secret", "not-a-bcrypt-digest") is False
    assert verify_password("correct-secret", "") is False


def test_dummy_hash_uses_requested_cost():
    digest = make_dummy_hash(rounds=5)
    assert digest.split("$")[2] == "05"
    assert verify_password("anything", digest) is False
