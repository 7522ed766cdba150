"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Entities own their shape and their record conversion
(to_record / from_record) so any Repository can persist them; stores do the
work. Datetimes are timezone-aware UTC in memory and ISO 8601 on disk.

Safe views (UserView, SessionView, SecretView) are the only shapes that
leave the store layer. They carry no password hash, salt, token string or
ciphertext.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)

TOKEN_ACCESS = "access"
TOKEN_REFRESH = "refresh"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    # Records written by hand may omit the offset; treat them as UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_record(entity: Any) -> dict[str, Any]:
    return {f.name: _dump_value(getattr(entity, f.name)) for f in fields(entity)}


def _from_record(cls: type, data: dict[str, Any], datetime_fields: tuple[str, ...]) -> Any:
    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in known}
    for name in datetime_fields:
        if name in kwargs:
            kwargs[name] = _parse_datetime(kwargs[name])
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@dataclass
class User:
    """A local account. Full record -- never returned past the store layer.

    password_hash is the bcrypt digest; password_salt is the bcrypt salt
    string it was derived with (also embedded in the digest, kept separately
    so verification recomputes from an explicit salt).

    password_change_required is set on the bootstrap admin so the UI can
    force a password change after the first login.
    """

    id: str
    username: str
    password_hash: str
    password_salt: str
    created: datetime
    role: str = ROLE_USER  # "admin" | "user"
    email: str | None = None
    last_login: datetime | None = None
    settings: dict[str, Any] | None = None
    password_change_required: bool = False

    def safe_view(self) -> UserView:
        return UserView(
            id=self.id,
            username=self.username,
            role=self.role,
            created=self.created,
            email=self.email,
            last_login=self.last_login,
            settings=dict(self.settings) if self.settings is not None else None,
            password_change_required=self.password_change_required,
        )

    def to_record(self) -> dict[str, Any]:
        return _to_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> User:
        return _from_record(cls, data, ("created", "last_login"))


@dataclass(frozen=True)
class UserView:
    id: str
    username: str
    role: str
    created: datetime
    email: str | None = None
    last_login: datetime | None = None
    settings: dict[str, Any] | None = None
    password_change_required: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass
class Session:
    """Server-side record binding a user to the live token pair.

    generation counts refreshes. Tokens embed the generation they were issued
    for; only tokens matching the session's current generation are accepted.
    """

    id: str
    user_id: str
    access_token: str
    refresh_token: str
    created: datetime
    expires: datetime
    last_activity: datetime
    generation: int = 0
    ip_address: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime) -> bool:
        # Inclusive: a session whose expiry equals "now" is already dead.
        return now >= self.expires

    def safe_view(self) -> SessionView:
        return SessionView(
            id=self.id,
            user_id=self.user_id,
            created=self.created,
            expires=self.expires,
            last_activity=self.last_activity,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )

    def to_record(self) -> dict[str, Any]:
        return _to_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Session:
        return _from_record(cls, data, ("created", "expires", "last_activity"))


@dataclass(frozen=True)
class SessionView:
    id: str
    user_id: str
    created: datetime
    expires: datetime
    last_activity: datetime
    ip_address: str | None = None
    user_agent: str | None = None


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenPayload:
    """Verified claim set of a signed token. Recomputed, never persisted."""

    user_id: str
    session_id: str
    kind: str  # "access" | "refresh"
    generation: int
    expires_at: datetime
    token_id: str


# ---------------------------------------------------------------------------
# Encrypted API keys
# ---------------------------------------------------------------------------


@dataclass
class SecretRecord:
    """An encrypted third-party API key. ciphertext and iv are hex strings."""

    id: str
    name: str
    ciphertext: str
    iv: str
    created: datetime
    last_used: datetime | None = None

    def safe_view(self) -> SecretView:
        return SecretView(id=self.id, name=self.name, created=self.created, last_used=self.last_used)

    def to_record(self) -> dict[str, Any]:
        return _to_record(self)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> SecretRecord:
        return _from_record(cls, data, ("created", "last_used"))


@dataclass(frozen=True)
class SecretView:
    id: str
    name: str
    created: datetime
    last_used: datetime | None = None
