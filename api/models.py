"""
API request and response models for Config Studio REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import SecretView, SessionView, UserView

# bcrypt consumes at most 72 bytes; longer inputs are rejected, not truncated.
_PASSWORD_MAX = 72
_PASSWORD_MIN = 8
_USERNAME_PATTERN = r"^[A-Za-z0-9_.@-]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
#
# Identifiers (username, email, key name) are trimmed. Secrets (passwords,
# key values) are taken byte-for-byte: a password with surrounding spaces is
# hashed and later verified exactly as typed.
# ---------------------------------------------------------------------------

_Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
_NewUsername = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64, pattern=_USERNAME_PATTERN)
]
_Email = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]
_KeyName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Only the upper bound is enforced on password here: a login with a short
    password must fail as bad_credentials, not as a validation error that
    reveals the policy.
    """

    username: _Username
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class PasswordChange(BaseModel):
    """Request body for POST /api/v1/auth/password."""

    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/auth/me. Omitted fields stay unchanged."""

    email: Optional[_Email] = None
    settings: Optional[dict[str, Any]] = None


class UserCreate(BaseModel):
    """Request body for POST /api/v1/auth/users (admin only)."""

    username: _NewUsername
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    email: Optional[_Email] = None
    role: RoleEnum = RoleEnum.user


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{id} (admin only)."""

    email: Optional[_Email] = None
    role: Optional[RoleEnum] = None
    settings: Optional[dict[str, Any]] = None


class ApiKeyCreate(BaseModel):
    """Request body for POST /api/v1/api-keys. value is encrypted before storage, unmodified."""

    name: _KeyName
    value: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    role: str
    email: Optional[str] = None
    created: datetime
    last_login: Optional[datetime] = None
    settings: Optional[dict[str, Any]] = None
    password_change_required: bool = False

    @classmethod
    def from_view(cls, view: UserView) -> "UserResponse":
        return cls(
            id=view.id,
            username=view.username,
            role=view.role,
            email=view.email,
            created=view.created,
            last_login=view.last_login,
            settings=view.settings,
            password_change_required=view.password_change_required,
        )


class TokenPairResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(TokenPairResponse):
    user: UserResponse


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created: datetime
    expires: datetime
    last_activity: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    current: bool = False

    @classmethod
    def from_view(cls, view: SessionView, current_session_id: str) -> "SessionResponse":
        return cls(
            id=view.id,
            created=view.created,
            expires=view.expires,
            last_activity=view.last_activity,
            ip_address=view.ip_address,
            user_agent=view.user_agent,
            current=view.id == current_session_id,
        )


class ApiKeyResponse(BaseModel):
    """Listing shape. Never carries the key value."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    created: datetime
    last_used: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: SecretView) -> "ApiKeyResponse":
        return cls(id=view.id, name=view.name, created=view.created, last_used=view.last_used)


class ApiKeyValueResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    value: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
