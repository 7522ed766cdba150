"""
auth/manager.py -- SessionManager, the public facade of the auth package.

Session lifecycle:
  Active     -- created by login(); token pair valid.
  Refreshed  -- refresh_token() rotated the pair in place; still Active.
  Expired    -- expiry reached; detected lazily by verify_token()/refresh_token()
                or eagerly by cleanup_expired_sessions(). Record deleted.
  Revoked    -- logout(), logout_all(), password change, user deletion.
                Record deleted.
Expired and Revoked are terminal: there is no resurrection.

Error policy:
  Store and token errors bubble up to this class unchanged. Here they are
  collapsed into the oracle-safe set: login() raises only InvalidCredentials
  (unknown user and wrong password are indistinguishable), refresh_token()
  raises only InvalidRefreshToken, verify_token() returns None. StorageError
  is never collapsed -- a broken disk is not an authentication failure.

Token rotation:
  Each session carries a generation counter that tokens embed as "gen".
  refresh_token() bumps it, so the previous access and refresh tokens stop
  verifying immediately even though their signatures remain valid until exp.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from auth.errors import (
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidSignature,
    SessionExpired,
    SessionNotFound,
    TokenExpired,
    UserNotFound,
)
from auth.models import (
    ROLE_ADMIN,
    ROLE_USER,
    TOKEN_ACCESS,
    TOKEN_REFRESH,
    Session,
    SessionView,
    TokenPayload,
    UserView,
    utcnow,
)
from auth.store import CredentialStore
from auth.tokens import TokenService

logger = logging.getLogger("configstudio.auth")

SESSION_MAX_AGE = timedelta(days=7)
DEFAULT_ADMIN_USERNAME = "admin"


@dataclass(frozen=True)
class ClientInfo:
    """Optional metadata about the client opening a session."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class LoginResult:
    user: UserView
    session_id: str
    access_token: str
    refresh_token: str


class SessionManager:
    """Orchestrates login, verification, refresh, logout and expiry sweeps."""

    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenService,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._clock = clock

    @property
    def store(self) -> CredentialStore:
        return self._store

    # ------------------------------------------------------------------
    # Login / token lifecycle
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str, client: ClientInfo | None = None) -> LoginResult:
        """Authenticate and open a new session.

        The session is persisted before the tokens are returned, so any later
        verify_token()/refresh_token() call can observe it.
        """
        user = await self._store.authenticate(username, password)
        if user is None:
            logger.info("Failed login for username %r", username)
            raise InvalidCredentials()

        try:
            await self._store.record_login(user.id)
            session = await self._open_session(user.id, client or ClientInfo())
        except UserNotFound:
            # Deleted between authentication and session creation.
            raise InvalidCredentials() from None
        view = user.safe_view()

        logger.info("Login: %s session=%s", username, session.id)
        return LoginResult(
            user=view,
            session_id=session.id,
            access_token=session.access_token,
            refresh_token=session.refresh_token,
        )

    async def _open_session(self, user_id: str, client: ClientInfo) -> Session:
        session_id = str(uuid.uuid4())
        now = self._clock()
        session = Session(
            id=session_id,
            user_id=user_id,
            access_token=self._tokens.issue(user_id, session_id, TOKEN_ACCESS, 0),
            refresh_token=self._tokens.issue(user_id, session_id, TOKEN_REFRESH, 0),
            created=now,
            expires=now + SESSION_MAX_AGE,
            last_activity=now,
            generation=0,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        await self._store.create_session(session)
        return session

    async def verify_token(self, access_token: str) -> TokenPayload | None:
        """Return the payload of a live access token, or None.

        None covers: bad signature, expired token, refresh token presented as
        access token, missing session, session owned by another user, stale
        generation, expired session (deleted on the spot).
        """
        try:
            payload = self._tokens.verify(access_token)
        except (InvalidSignature, TokenExpired):
            return None
        if payload.kind != TOKEN_ACCESS:
            return None

        session = self._store.get_session(payload.session_id)
        if session is None or session.user_id != payload.user_id:
            return None

        now = self._clock()
        if session.is_expired(now):
            await self._store.delete_session(session.id)
            return None
        if payload.generation != session.generation:
            return None

        await self._store.touch_session(session.id, now)
        return payload

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Rotate the session's token pair. Raises InvalidRefreshToken on any failure."""
        try:
            return await self._rotate(refresh_token)
        except (InvalidSignature, TokenExpired, SessionNotFound, SessionExpired, InvalidRefreshToken) as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise InvalidRefreshToken() from None

    async def _rotate(self, refresh_token: str) -> TokenPair:
        payload = self._tokens.verify(refresh_token)
        if payload.kind != TOKEN_REFRESH:
            raise InvalidRefreshToken("Token is not a refresh token.")

        session = self._store.get_session(payload.session_id)
        if session is None or session.user_id != payload.user_id:
            raise SessionNotFound(payload.session_id)

        now = self._clock()
        if session.is_expired(now):
            await self._store.delete_session(session.id)
            raise SessionExpired(session.id)
        if payload.generation != session.generation:
            raise InvalidRefreshToken("Refresh token has been rotated out.")

        generation = session.generation + 1
        pair = TokenPair(
            access_token=self._tokens.issue(session.user_id, session.id, TOKEN_ACCESS, generation),
            refresh_token=self._tokens.issue(session.user_id, session.id, TOKEN_REFRESH, generation),
        )
        await self._store.rotate_session_tokens(
            session.id, session.generation, pair.access_token, pair.refresh_token, now
        )
        return pair

    async def logout(self, session_id: str) -> None:
        if await self._store.delete_session(session_id):
            logger.info("Logout: session=%s", session_id)

    async def logout_all(self, user_id: str) -> None:
        count = await self._store.delete_sessions_for_user(user_id)
        if count:
            logger.info("Logout-all: user=%s sessions=%d", user_id, count)

    async def cleanup_expired_sessions(self) -> int:
        return await self._store.sweep_expired_sessions(self._clock())

    # ------------------------------------------------------------------
    # Users (thin pass-throughs for the HTTP layer and CLI)
    # ------------------------------------------------------------------

    async def create_user(
        self, username: str, password: str, email: str | None = None, role: str = ROLE_USER
    ) -> UserView:
        return await self._store.create_user(username, password, email=email, role=role)

    def get_user(self, user_id: str) -> UserView | None:
        return self._store.get_user(user_id)

    def find_user_by_username(self, username: str) -> UserView | None:
        return self._store.find_user_by_username(username)

    def list_users(self) -> list[UserView]:
        return self._store.list_users()

    async def update_user(self, user_id: str, **fields: Any) -> UserView:
        return await self._store.update_user(user_id, **fields)

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        await self._store.change_password(user_id, current_password, new_password)

    async def reset_password(self, user_id: str, new_password: str) -> None:
        await self._store.reset_password(user_id, new_password)

    async def delete_user(self, user_id: str) -> bool:
        return await self._store.delete_user(user_id)

    def list_sessions(self, user_id: str) -> list[SessionView]:
        return self._store.list_sessions_for_user(user_id)

    async def ensure_default_admin(self, password: str) -> UserView | None:
        """Create the bootstrap admin when the user set is empty.

        The account is flagged password_change_required; clients must force a
        password change after the first login.
        """
        if self._store.has_users():
            return None
        admin = await self._store.create_user(
            DEFAULT_ADMIN_USERNAME, password, role=ROLE_ADMIN, password_change_required=True
        )
        logger.warning("Created default admin user %r. Please change the password!", DEFAULT_ADMIN_USERNAME)
        return admin
