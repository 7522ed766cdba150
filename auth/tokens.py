"""
auth/tokens.py -- Signed access/refresh tokens (python-jose, HS256).

Security design decisions:
  Stateless: TokenService holds only the signing secret. verify() checks the
       signature and the embedded expiry and nothing else. Whether the session
       a token points at is still alive is the SessionManager's job -- a
       signed token cannot be recalled, so liveness lives in the session table.

  Claims: sub (user id), sid (session id), typ ("access" | "refresh"),
       gen (session token generation), iat, exp, jti. jti is random so two
       tokens issued in the same second for the same session still differ.

  Lifetimes: access 1 hour, refresh 7 days. Fixed policy, not configurable.

  Signing secret: load_signing_secret() prefers JWT_SECRET. Without it the
       secret is generated once and persisted next to the credential files so
       a restart does not invalidate every issued token. PERSIST_JWT_SECRET=false
       restores the ephemeral per-process behaviour.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidSignature, MalformedToken, TokenExpired
from auth.models import TOKEN_ACCESS, TOKEN_REFRESH, TokenPayload, utcnow
from auth.repository import read_or_create_key_file
from core.config import Settings

logger = logging.getLogger("configstudio.auth")

_ALGORITHM = "HS256"

ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=7)

_TTL_BY_KIND = {
    TOKEN_ACCESS: ACCESS_TOKEN_TTL,
    TOKEN_REFRESH: REFRESH_TOKEN_TTL,
}

_SECRET_FILE = ".jwt-secret"
_SECRET_BYTES = 32


class TokenService:
    """Issue and verify signed, time-limited token pairs bound to a session."""

    def __init__(self, secret: str, clock: Callable[[], datetime] = utcnow) -> None:
        if len(secret) < 32:
            raise ValueError("Signing secret must be at least 32 characters.")
        self._secret = secret
        self._clock = clock

    def issue(self, user_id: str, session_id: str, kind: str, generation: int = 0) -> str:
        if kind not in _TTL_BY_KIND:
            raise ValueError(f"Unknown token kind: {kind!r}")
        now = self._clock()
        claims = {
            "sub": user_id,
            "sid": session_id,
            "typ": kind,
            "gen": generation,
            "iat": now,
            "exp": now + _TTL_BY_KIND[kind],
            "jti": secrets.token_urlsafe(16),
        }
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenPayload:
        """Return the payload of a correctly signed, unexpired token.

        Raises TokenExpired when exp has passed, InvalidSignature for any other
        decode failure, MalformedToken when the claims are not ours.
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired("Token has expired.") from exc
        except JWTError as exc:
            raise InvalidSignature("Token signature or format is invalid.") from exc

        user_id = claims.get("sub")
        session_id = claims.get("sid")
        kind = claims.get("typ")
        generation = claims.get("gen")
        if (
            not isinstance(user_id, str)
            or not isinstance(session_id, str)
            or kind not in _TTL_BY_KIND
            or not isinstance(generation, int)
            or "exp" not in claims
        ):
            raise MalformedToken("Token is missing required claims.")

        return TokenPayload(
            user_id=user_id,
            session_id=session_id,
            kind=kind,
            generation=generation,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            token_id=str(claims.get("jti", "")),
        )


def load_signing_secret(settings: Settings) -> str:
    """Resolve the JWT signing secret per JWT_SECRET / PERSIST_JWT_SECRET."""
    if settings.jwt_secret:
        return settings.jwt_secret
    if settings.persist_jwt_secret:
        return read_or_create_key_file(settings.auth_dir / _SECRET_FILE, _SECRET_BYTES).hex()
    logger.warning("Using an ephemeral JWT secret. Issued tokens will not survive a restart.")
    return secrets.token_hex(_SECRET_BYTES)
