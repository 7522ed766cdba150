"""
auth/store.py -- Credential store: users and sessions.

Pattern: in-memory maps as the authoritative state, a Repository per
collection as the durable copy (see auth/repository.py). Every mutation runs
under the store's asyncio.Lock and re-persists the full collection before
the lock is released, so two requests racing to save cannot lose an update.

Reads (get_user, get_session, list_*) are synchronous dictionary lookups and
never touch disk. get_session returns a copy; callers change session state
only through store methods.

bcrypt work runs in a worker thread (asyncio.to_thread) so a login does not
stall every other request on the event loop.

Security:
  authenticate() always runs exactly one bcrypt computation -- against the
  user's real hash, or against a dummy hash when the username is unknown --
  so response time does not reveal whether a username exists.

  Username lookups go through a username -> id index rather than a scan.
  Only authenticate() hands out the full User; every public lookup returns
  a safe view.

  Password rotation and user deletion drop the user's sessions from memory
  in the same critical section as the user change, before anything is
  written. A StorageError from the write still propagates, but the old
  sessions are already unusable.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from auth.errors import DuplicateUsername, InvalidCredentials, SessionNotFound, UserNotFound
from auth.models import ROLE_ADMIN, ROLE_USER, ROLES, Session, SessionView, User, UserView, utcnow
from auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from auth.repository import Repository

logger = logging.getLogger("configstudio.auth")

_MUTABLE_USER_FIELDS = {"email", "settings", "role"}


class CredentialStore:
    """Durable CRUD over Users and Sessions.

    Usage:
        store = CredentialStore(users_repo, sessions_repo)
        await store.load()
        view = await store.create_user("alice", "pw123456")
    """

    def __init__(
        self,
        users: Repository[User],
        sessions: Repository[Session],
        *,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._users_repo = users
        self._sessions_repo = sessions
        self._rounds = bcrypt_rounds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._users: dict[str, User] = {}
        self._usernames: dict[str, str] = {}
        self._sessions: dict[str, Session] = {}
        self._dummy: tuple[str, str] | None = None

    async def load(self) -> None:
        """Replace in-memory state with the persisted collections."""
        users = await asyncio.to_thread(self._users_repo.load)
        sessions = await asyncio.to_thread(self._sessions_repo.load)
        await self._dummy_credentials()
        async with self._lock:
            self._users = {u.id: u for u in users}
            self._usernames = {u.username: u.id for u in users}
            self._sessions = {s.id: s for s in sessions}
        logger.info("Credential store loaded (%d users, %d sessions)", len(self._users), len(self._sessions))

    async def _save_users(self) -> None:
        await asyncio.to_thread(self._users_repo.save, list(self._users.values()))

    async def _save_sessions(self) -> None:
        await asyncio.to_thread(self._sessions_repo.save, list(self._sessions.values()))

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def verify_password(self, candidate: str, stored_hash: str, stored_salt: str) -> bool:
        """Constant-time check of candidate against a stored hash and salt. CPU-bound."""
        return verify_password(candidate, stored_hash, stored_salt)

    async def _hash(self, password: str) -> tuple[str, str]:
        return await asyncio.to_thread(hash_password, password, None, self._rounds)

    async def _dummy_credentials(self) -> tuple[str, str]:
        """Hash and salt checked against when the username is unknown. Computed once, off the loop."""
        if self._dummy is None:
            self._dummy = await self._hash("timing-equalization-dummy")
        return self._dummy

    async def authenticate(self, username: str, password: str) -> User | None:
        """Return the user when username/password match, None otherwise.

        Runs bcrypt whether or not the user exists. Do NOT return early
        before the hash -- that reintroduces the username-enumeration timing
        difference.
        """
        user = self._find_user(username)
        if user is None:
            dummy_hash, dummy_salt = await self._dummy_credentials()
            await asyncio.to_thread(self.verify_password, password, dummy_hash, dummy_salt)
            return None
        ok = await asyncio.to_thread(self.verify_password, password, user.password_hash, user.password_salt)
        return user if ok else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        return bool(self._users)

    async def create_user(
        self,
        username: str,
        password: str,
        email: str | None = None,
        role: str = ROLE_USER,
        *,
        password_change_required: bool = False,
    ) -> UserView:
        """Create a user and return its safe view.

        Raises DuplicateUsername if the name is taken, ValueError for an empty
        username or unknown role, PasswordPolicyError for an unusable password.
        The duplicate check runs again under the lock because hashing happens
        outside it.
        """
        if not username:
            raise ValueError("Username must not be empty.")
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        if username in self._usernames:
            raise DuplicateUsername(username)

        password_hash, salt = await self._hash(password)

        async with self._lock:
            if username in self._usernames:
                raise DuplicateUsername(username)
            user = User(
                id=str(uuid.uuid4()),
                username=username,
                email=email,
                password_hash=password_hash,
                password_salt=salt,
                created=self._clock(),
                role=role,
                password_change_required=password_change_required,
            )
            self._users[user.id] = user
            self._usernames[username] = user.id
            await self._save_users()

        logger.info("User created: %s (%s) role=%s", username, user.id, role)
        return user.safe_view()

    def _find_user(self, username: str) -> User | None:
        user_id = self._usernames.get(username)
        return self._users.get(user_id) if user_id is not None else None

    def find_user_by_username(self, username: str) -> UserView | None:
        user = self._find_user(username)
        return user.safe_view() if user is not None else None

    def get_user(self, user_id: str) -> UserView | None:
        user = self._users.get(user_id)
        return user.safe_view() if user is not None else None

    def list_users(self) -> list[UserView]:
        return [u.safe_view() for u in sorted(self._users.values(), key=lambda u: u.username)]

    def count_admins(self) -> int:
        return sum(1 for u in self._users.values() if u.role == ROLE_ADMIN)

    async def update_user(self, user_id: str, **fields: Any) -> UserView:
        """Update mutable profile fields: email, settings, role.

        Unknown keys raise ValueError rather than being ignored.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "role" in fields and fields["role"] not in ROLES:
            raise ValueError(f"Unknown role: {fields['role']!r}")

        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFound(user_id)
            for name, value in fields.items():
                setattr(user, name, value)
            await self._save_users()
            return user.safe_view()

    async def record_login(self, user_id: str) -> None:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFound(user_id)
            user.last_login = self._clock()
            await self._save_users()

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Rotate the password after checking the current one.

        Wrong current password raises InvalidCredentials and leaves sessions
        alone. Success revokes every session of the user.
        """
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFound(user_id)
        ok = await asyncio.to_thread(self.verify_password, current_password, user.password_hash, user.password_salt)
        if not ok:
            raise InvalidCredentials("Current password is incorrect.")
        await self._set_password(user_id, new_password)

    async def reset_password(self, user_id: str, new_password: str) -> None:
        """Administrative password reset. Same rotation, no current-password check."""
        if user_id not in self._users:
            raise UserNotFound(user_id)
        await self._set_password(user_id, new_password)

    async def _set_password(self, user_id: str, new_password: str) -> None:
        password_hash, salt = await self._hash(new_password)
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFound(user_id)
            user.password_hash = password_hash
            user.password_salt = salt
            user.password_change_required = False
            revoked = self._drop_sessions(user_id)
            await self._save_users_and_sessions(sessions_changed=bool(revoked))
        logger.info("Password changed for user %s; %d sessions revoked", user_id, len(revoked))

    async def delete_user(self, user_id: str) -> bool:
        """Remove a user and cascade-delete its sessions. False if absent."""
        async with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                return False
            self._usernames.pop(user.username, None)
            revoked = self._drop_sessions(user_id)
            await self._save_users_and_sessions(sessions_changed=bool(revoked))
        logger.info("User deleted: %s (%s)", user.username, user_id)
        return True

    def _drop_sessions(self, user_id: str) -> list[str]:
        """Remove every in-memory session of user_id. Caller holds the lock."""
        doomed = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
        for sid in doomed:
            del self._sessions[sid]
        return doomed

    async def _save_users_and_sessions(self, *, sessions_changed: bool) -> None:
        # Sessions are already gone from memory; persist them even if the users write fails.
        try:
            await self._save_users()
        finally:
            if sessions_changed:
                await self._save_sessions()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, session: Session) -> None:
        async with self._lock:
            if session.user_id not in self._users:
                raise UserNotFound(session.user_id)
            self._sessions[session.id] = replace(session)
            await self._save_sessions()

    def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return replace(session) if session is not None else None

    async def touch_session(self, session_id: str, when: datetime) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.last_activity = when
            await self._save_sessions()

    async def rotate_session_tokens(
        self,
        session_id: str,
        expected_generation: int,
        access_token: str,
        refresh_token: str,
        when: datetime,
    ) -> None:
        """Overwrite the token pair in place and advance the generation.

        Compare-and-swap on generation: if another refresh already rotated the
        session (or it is gone), raise SessionNotFound and change nothing.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.generation != expected_generation:
                raise SessionNotFound(session_id)
            session.access_token = access_token
            session.refresh_token = refresh_token
            session.generation = expected_generation + 1
            session.last_activity = when
            await self._save_sessions()

    async def delete_session(self, session_id: str) -> bool:
        """Delete one session. Deleting a missing session is not an error."""
        async with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return False
            await self._save_sessions()
            return True

    async def delete_sessions_for_user(self, user_id: str) -> int:
        async with self._lock:
            doomed = self._drop_sessions(user_id)
            if doomed:
                await self._save_sessions()
            return len(doomed)

    def list_sessions_for_user(self, user_id: str) -> list[SessionView]:
        sessions = [s for s in self._sessions.values() if s.user_id == user_id]
        return [s.safe_view() for s in sorted(sessions, key=lambda s: s.created)]

    async def sweep_expired_sessions(self, now: datetime | None = None) -> int:
        """Delete every session whose expiry is at or before now. Returns the count."""
        cutoff = now if now is not None else self._clock()
        async with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.is_expired(cutoff)]
            for sid in doomed:
                del self._sessions[sid]
            if doomed:
                await self._save_sessions()
        if doomed:
            logger.info("Swept %d expired sessions", len(doomed))
        return len(doomed)
