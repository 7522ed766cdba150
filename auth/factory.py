"""
auth/factory.py -- Composition root for the auth package.

create_auth_services() is the only place that decides which Repository
backs each store and where the key files live. api/main.py calls it from the
FastAPI lifespan, main.py calls it from each CLI command. Nothing imports a
shared global store.

Startup order:
  1. auth_dir created with mode 0700.
  2. Repositories (JSON files or SQL tables) and the signing secret.
  3. Stores loaded, encryption key initialized.
  4. Bootstrap admin created if the user set is empty.
  5. Expired sessions swept.
Any failure propagates -- a service that cannot read its credential files
must not start with an empty user set.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from auth.manager import SessionManager
from auth.models import SecretRecord, Session, User
from auth.repository import JsonFileRepository, SqlRepository, create_sql_engine, ensure_private_dir
from auth.store import CredentialStore
from auth.tokens import TokenService, load_signing_secret
from auth.vault import SecretStore
from core.config import Settings


@dataclass
class AuthServices:
    store: CredentialStore
    vault: SecretStore
    tokens: TokenService
    sessions: SessionManager
    engine: Engine | None = None

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


def _build_repositories(settings: Settings):
    if settings.storage_backend == "sql":
        engine = create_sql_engine(settings.resolved_database_url)
        return (
            SqlRepository(engine, "users", User.from_record),
            SqlRepository(engine, "sessions", Session.from_record),
            SqlRepository(engine, "api_keys", SecretRecord.from_record),
            engine,
        )
    auth_dir = settings.auth_dir
    return (
        JsonFileRepository(auth_dir / "users.json", User.from_record),
        JsonFileRepository(auth_dir / "sessions.json", Session.from_record),
        JsonFileRepository(auth_dir / "api-keys.json", SecretRecord.from_record),
        None,
    )


async def create_auth_services(settings: Settings) -> AuthServices:
    """Build, load and bootstrap every auth component for settings."""
    await asyncio.to_thread(ensure_private_dir, settings.auth_dir)
    users_repo, sessions_repo, secrets_repo, engine = await asyncio.to_thread(_build_repositories, settings)
    secret = await asyncio.to_thread(load_signing_secret, settings)

    store = CredentialStore(users_repo, sessions_repo, bcrypt_rounds=settings.bcrypt_rounds)
    vault = SecretStore(secrets_repo, settings.auth_dir / ".key")
    tokens = TokenService(secret)
    sessions = SessionManager(store, tokens)

    await store.load()
    await vault.load()
    await vault.init_key()
    await sessions.ensure_default_admin(settings.admin_password)
    await sessions.cleanup_expired_sessions()

    return AuthServices(store=store, vault=vault, tokens=tokens, sessions=sessions, engine=engine)
