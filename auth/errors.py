"""
auth/errors.py -- Exception taxonomy for the auth package.

Store and token layers raise the precise class. SessionManager collapses
authentication failures into InvalidCredentials / InvalidRefreshToken before
they reach the HTTP layer, so callers cannot tell "unknown user" from "wrong
password" or "session expired" from "session revoked".

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""


# ---------------------------------------------------------------------------
# Input / validation
# ---------------------------------------------------------------------------


class DuplicateUsername(AuthError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username already exists: {username!r}")
        self.username = username


class UserNotFound(AuthError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class PasswordPolicyError(AuthError, ValueError):
    """Password is empty or longer than bcrypt's 72-byte input limit."""


# ---------------------------------------------------------------------------
# Authentication failures (opaque to callers)
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    def __init__(self, message: str = "Invalid username or password.") -> None:
        super().__init__(message)


class InvalidRefreshToken(AuthError):
    def __init__(self, message: str = "Invalid refresh token.") -> None:
        super().__init__(message)


class SessionNotFound(AuthError):
    pass


class SessionExpired(AuthError):
    pass


# ---------------------------------------------------------------------------
# Token integrity
# ---------------------------------------------------------------------------


class InvalidSignature(AuthError):
    """Token failed signature verification or could not be decoded."""


class MalformedToken(InvalidSignature):
    """Token verified but lacks the claims this service issues."""


class TokenExpired(AuthError):
    pass


# ---------------------------------------------------------------------------
# Secret store
# ---------------------------------------------------------------------------


class KeyNotInitialized(AuthError):
    def __init__(self) -> None:
        super().__init__("Encryption key not initialized; call init_key() first.")


class DecryptionFailed(AuthError):
    pass


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class StorageError(AuthError, OSError):
    """Reading or writing durable state failed. Always propagated."""
