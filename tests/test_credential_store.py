"""
tests/test_credential_store.py -- CredentialStore users and sessions.

Coverage:
  - create_user: safe view only, duplicate usernames, bad role, persistence,
    StorageError from a failed write
  - find_user_by_username returns the safe view
  - authenticate: match, wrong password, unknown user (dummy hash computed on load)
  - change_password / reset_password: current-password check, session revocation,
    password_change_required cleared
  - update_user field whitelist, delete_user cascade
  - sessions: copies not live references, generation compare-and-swap,
    inclusive expiry in the sweep
"""

from __future__ import annotations

from dataclasses import fields
from datetime import timedelta

import pytest

from auth.errors import DuplicateUsername, InvalidCredentials, SessionNotFound, StorageError, UserNotFound
from auth.models import ROLE_ADMIN, Session, UserView
from auth.store import CredentialStore


def _session(user_id: str, now, sid: str = "s1", ttl: timedelta = timedelta(days=7)) -> Session:
    return Session(
        id=sid,
        user_id=user_id,
        access_token=f"access-{sid}",
        refresh_token=f"refresh-{sid}",
        created=now,
        expires=now + ttl,
        last_activity=now,
    )


class TestUsers:
    async def test_create_returns_safe_view(self, store: CredentialStore) -> None:
        view = await store.create_user("alice", "pw123456", email="a@example.com")
        assert isinstance(view, UserView)
        names = {f.name for f in fields(view)}
        assert "password_hash" not in names
        assert "password_salt" not in names
        assert view.role == "user"
        assert view.email == "a@example.com"

    async def test_duplicate_username(self, store: CredentialStore) -> None:
        await store.create_user("alice", "pw123456")
        with pytest.raises(DuplicateUsername):
            await store.create_user("alice", "other-password")
        assert len(store.list_users()) == 1

    async def test_bad_role_rejected(self, store: CredentialStore) -> None:
        with pytest.raises(ValueError):
            await store.create_user("alice", "pw123456", role="superuser")

    async def test_empty_username_rejected(self, store: CredentialStore) -> None:
        with pytest.raises(ValueError):
            await store.create_user("", "pw123456")

    async def test_users_persist_across_reload(self, store, users_repo, sessions_repo, clock) -> None:
        await store.create_user("alice", "pw123456")
        reloaded = CredentialStore(users_repo, sessions_repo, bcrypt_rounds=4, clock=clock)
        await reloaded.load()
        assert reloaded.find_user_by_username("alice") is not None
        assert await reloaded.authenticate("alice", "pw123456") is not None

    async def test_list_users_sorted(self, store: CredentialStore) -> None:
        await store.create_user("carol", "pw123456")
        await store.create_user("alice", "pw123456")
        assert [u.username for u in store.list_users()] == ["alice", "carol"]

    async def test_update_user(self, store: CredentialStore) -> None:
        view = await store.create_user("alice", "pw123456")
        updated = await store.update_user(view.id, email="new@example.com", settings={"theme": "dark"})
        assert updated.email == "new@example.com"
        assert updated.settings == {"theme": "dark"}

    async def test_update_user_rejects_protected_fields(self, store: CredentialStore) -> None:
        view = await store.create_user("alice", "pw123456")
        with pytest.raises(ValueError):
            await store.update_user(view.id, password_hash="x")

    async def test_update_unknown_user(self, store: CredentialStore) -> None:
        with pytest.raises(UserNotFound):
            await store.update_user("nope", email="x@example.com")

    async def test_count_admins(self, store: CredentialStore) -> None:
        await store.create_user("root", "pw123456", role=ROLE_ADMIN)
        await store.create_user("alice", "pw123456")
        assert store.count_admins() == 1

    async def test_find_by_username_is_safe_view(self, store: CredentialStore) -> None:
        await store.create_user("alice", "pw123456")
        view = store.find_user_by_username("alice")
        assert isinstance(view, UserView)
        names = {f.name for f in fields(view)}
        assert "password_hash" not in names
        assert "password_salt" not in names

    async def test_create_user_write_failure(self, store: CredentialStore, users_repo, monkeypatch) -> None:
        def fail(records) -> None:
            raise StorageError("disk full")

        monkeypatch.setattr(users_repo, "save", fail)
        with pytest.raises(StorageError):
            await store.create_user("alice", "pw123456")


class TestAuthenticate:
    async def test_correct_password(self, store: CredentialStore) -> None:
        await store.create_user("alice", "pw123456")
        user = await store.authenticate("alice", "pw123456")
        assert user is not None and user.username == "alice"

    async def test_wrong_password(self, store: CredentialStore) -> None:
        await store.create_user("alice", "pw123456")
        assert await store.authenticate("alice", "wrong-pass") is None

    async def test_unknown_user(self, store: CredentialStore) -> None:
        assert await store.authenticate("ghost", "pw123456") is None

    async def test_dummy_hash_ready_after_load(self, store: CredentialStore) -> None:
        assert store._dummy is not None

    async def test_unknown_user_without_load(self, users_repo, sessions_repo, clock) -> None:
        fresh = CredentialStore(users_repo, sessions_repo, bcrypt_rounds=4, clock=clock)
        assert fresh._dummy is None
        assert await fresh.authenticate("ghost", "pw123456") is None
        assert fresh._dummy is not None


class TestPasswords:
    async def test_change_password_wrong_current(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        with pytest.raises(InvalidCredentials):
            await store.change_password(view.id, "wrong-pass", "newpass123")
        assert await store.authenticate("alice", "pw123456") is not None
        assert store.get_session("s1") is not None

    async def test_change_password_revokes_sessions(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock(), "s1"))
        await store.create_session(_session(view.id, clock(), "s2"))
        await store.change_password(view.id, "pw123456", "newpass123")
        assert await store.authenticate("alice", "pw123456") is None
        assert await store.authenticate("alice", "newpass123") is not None
        assert store.list_sessions_for_user(view.id) == []

    async def test_reset_clears_change_required(self, store: CredentialStore) -> None:
        view = await store.create_user("admin", "admin123", role=ROLE_ADMIN, password_change_required=True)
        assert view.password_change_required is True
        await store.reset_password(view.id, "better-pass")
        assert store.get_user(view.id).password_change_required is False

    async def test_reset_unknown_user(self, store: CredentialStore) -> None:
        with pytest.raises(UserNotFound):
            await store.reset_password("nope", "better-pass")


class TestDeleteUser:
    async def test_cascades_sessions(self, store: CredentialStore, clock) -> None:
        alice = await store.create_user("alice", "pw123456")
        bob = await store.create_user("bob", "pw123456")
        await store.create_session(_session(alice.id, clock(), "a1"))
        await store.create_session(_session(bob.id, clock(), "b1"))

        assert await store.delete_user(alice.id) is True
        assert store.get_user(alice.id) is None
        assert store.find_user_by_username("alice") is None
        assert store.get_session("a1") is None
        assert store.get_session("b1") is not None

    async def test_missing_user(self, store: CredentialStore) -> None:
        assert await store.delete_user("nope") is False

    async def test_username_reusable_after_delete(self, store: CredentialStore) -> None:
        alice = await store.create_user("alice", "pw123456")
        await store.delete_user(alice.id)
        again = await store.create_user("alice", "pw123456")
        assert again.id != alice.id


class TestSessions:
    async def test_session_requires_existing_user(self, store: CredentialStore, clock) -> None:
        with pytest.raises(UserNotFound):
            await store.create_session(_session("ghost", clock()))

    async def test_get_session_returns_copy(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        copy = store.get_session("s1")
        copy.generation = 99
        assert store.get_session("s1").generation == 0

    async def test_rotate_advances_generation(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        await store.rotate_session_tokens("s1", 0, "a2", "r2", clock())
        session = store.get_session("s1")
        assert (session.generation, session.access_token, session.refresh_token) == (1, "a2", "r2")

    async def test_rotate_with_stale_generation_fails(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        await store.rotate_session_tokens("s1", 0, "a2", "r2", clock())
        with pytest.raises(SessionNotFound):
            await store.rotate_session_tokens("s1", 0, "a3", "r3", clock())
        assert store.get_session("s1").access_token == "a2"

    async def test_delete_session_idempotent(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        assert await store.delete_session("s1") is True
        assert await store.delete_session("s1") is False

    async def test_list_sessions_omits_tokens(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        [listed] = store.list_sessions_for_user(view.id)
        names = {f.name for f in fields(listed)}
        assert "access_token" not in names and "refresh_token" not in names

    async def test_sweep_removes_only_expired(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        now = clock()
        for i in range(3):
            await store.create_session(_session(view.id, now, f"old{i}", ttl=timedelta(hours=1)))
        for i in range(2):
            await store.create_session(_session(view.id, now, f"new{i}", ttl=timedelta(days=7)))

        removed = await store.sweep_expired_sessions(now + timedelta(hours=2))
        assert removed == 3
        assert {s.id for s in store.list_sessions_for_user(view.id)} == {"new0", "new1"}

    async def test_sweep_boundary_is_inclusive(self, store: CredentialStore, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        now = clock()
        await store.create_session(_session(view.id, now, ttl=timedelta(hours=1)))
        assert await store.sweep_expired_sessions(now + timedelta(hours=1) - timedelta(microseconds=1)) == 0
        assert await store.sweep_expired_sessions(now + timedelta(hours=1)) == 1

    async def test_sessions_persist_across_reload(self, store, users_repo, sessions_repo, clock) -> None:
        view = await store.create_user("alice", "pw123456")
        await store.create_session(_session(view.id, clock()))
        reloaded = CredentialStore(users_repo, sessions_repo, bcrypt_rounds=4, clock=clock)
        await reloaded.load()
        assert reloaded.get_session("s1") == store.get_session("s1")
