"""
auth/passwords.py -- Password hashing (bcrypt, direct usage).

bcrypt is the slow, salted key-derivation step. The salt is generated
separately from the digest and stored alongside it, so verification
recomputes bcrypt(candidate, stored_salt) and compares the result to the
stored digest with hmac.compare_digest (running time independent of where
the first differing byte sits).

Passwords longer than 72 bytes are rejected instead of silently truncated.
bcrypt 4.x+ raises on them anyway; PasswordPolicyError gives callers a clean
validation error. The API layer also caps length in its Pydantic models.

These functions are CPU-heavy. Async callers must run them through
asyncio.to_thread() so other requests are not starved.
"""

from __future__ import annotations

import hmac

import bcrypt

from auth.errors import PasswordPolicyError

DEFAULT_ROUNDS = 12
_MAX_PASSWORD_BYTES = 72


def _encode(plain: str) -> bytes:
    raw = plain.encode("utf-8")
    if not raw:
        raise PasswordPolicyError("Password must not be empty.")
    if len(raw) > _MAX_PASSWORD_BYTES:
        raise PasswordPolicyError(f"Password must be at most {_MAX_PASSWORD_BYTES} bytes.")
    return raw


def generate_salt(rounds: int = DEFAULT_ROUNDS) -> str:
    return bcrypt.gensalt(rounds=rounds).decode("ascii")


def hash_password(plain: str, salt: str | None = None, rounds: int = DEFAULT_ROUNDS) -> tuple[str, str]:
    """Return (digest, salt) for plain. A new salt is generated when none is given."""
    raw = _encode(plain)
    use_salt = salt or generate_salt(rounds)
    digest = bcrypt.hashpw(raw, use_salt.encode("ascii")).decode("ascii")
    return digest, use_salt


def verify_password(candidate: str, stored_hash: str, stored_salt: str) -> bool:
    """Return True if candidate derives stored_hash under stored_salt.

    Any malformed input (empty/oversized candidate, corrupt salt) is a
    mismatch, never an exception.
    """
    try:
        computed, _ = hash_password(candidate, stored_salt)
    except ValueError:
        return False
    return hmac.compare_digest(computed.encode("utf-8"), stored_hash.encode("utf-8"))
