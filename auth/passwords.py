"""
auth/passwords.py -- bcrypt password hashing and verification.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x
rejects outright.

The salt and cost factor live inside the digest, so verification needs
nothing but the digest itself.
"""

from __future__ import annotations

import secrets

import bcrypt

DEFAULT_ROUNDS = 12


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Errors propagate: a login that cannot hash must fail, not continue.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed digest, a password
    over bcrypt's length limit, or any other internal failure is a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


def make_dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a throwaway digest at the given cost for timing equalization.

    Rejecting an unknown email must cost the same bcrypt work as rejecting
    a wrong password, or response time leaks which emails exist.
    """
    return hash_password(secrets.token_urlsafe(24), rounds=rounds)
