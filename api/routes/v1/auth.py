"""
api/routes/v1/auth.py -- Authentication, session and user management endpoints.

Routes:
  POST   /api/v1/auth/login               -- password login; returns token pair
  POST   /api/v1/auth/refresh             -- rotate the token pair
  POST   /api/v1/auth/logout              -- end the current session
  POST   /api/v1/auth/logout-all          -- end every session of the caller
  GET    /api/v1/auth/me                  -- current user (requires auth)
  PATCH  /api/v1/auth/me                  -- update email / settings
  POST   /api/v1/auth/password            -- change password (revokes all sessions)
  GET    /api/v1/auth/sessions            -- caller's sessions, tokens omitted
  DELETE /api/v1/auth/sessions/{id}       -- revoke one of the caller's sessions
  POST   /api/v1/auth/users               -- create user (admin only)
  GET    /api/v1/auth/users               -- list users (admin only)
  PATCH  /api/v1/auth/users/{id}          -- update role/email/settings (admin only)
  DELETE /api/v1/auth/users/{id}          -- delete user and its sessions (admin only)

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  Unknown username and wrong password return the same bad_credentials body.
  Every refresh failure returns the same invalid_refresh_token body.
  Cache-Control: no-store on every response that carries tokens.
  IDOR guard: DELETE /sessions/{id} only matches the caller's own sessions.
  Last-admin guard: an admin cannot delete themselves and the last admin
  cannot be demoted.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordChange,
    ProfilePatch,
    RefreshRequest,
    SessionResponse,
    TokenPairResponse,
    UserCreate,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_current_user, get_session_id, require_admin
from auth.errors import (
    DuplicateUsername,
    InvalidCredentials,
    InvalidRefreshToken,
    PasswordPolicyError,
    UserNotFound,
)
from auth.manager import ClientInfo, SessionManager
from auth.models import ROLE_ADMIN, UserView
from auth.tokens import ACCESS_TOKEN_TTL

# Auth policy:
# - POST   /auth/login, /auth/refresh:            public
# - /auth/logout, /auth/logout-all, /auth/me,
#   /auth/password, /auth/sessions*:              requires auth (get_current_user)
# - /auth/users*:                                 requires admin (require_admin)
router = APIRouter()

_EXPIRES_IN = int(ACCESS_TOKEN_TTL.total_seconds())


def _manager(request: Request) -> SessionManager:
    return request.app.state.auth.sessions


def _no_store(status_code: int, content: dict) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": message})


def _password_policy(exc: PasswordPolicyError) -> HTTPException:
    return HTTPException(status_code=422, detail={"code": "password_policy", "message": str(exc)})


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; open a session.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    client = ClientInfo(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    try:
        result = await _manager(request).login(body.username, body.password, client)
    except InvalidCredentials:
        return _no_store(
            401,
            {"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )

    content = LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=_EXPIRES_IN,
        user=UserResponse.from_view(result.user),
    ).model_dump(mode="json")
    return _no_store(200, content)


@router.post("/auth/refresh", response_model=TokenPairResponse)
async def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The previous pair stops working as soon as this returns.
    """
    try:
        pair = await _manager(request).refresh_token(body.refresh_token)
    except InvalidRefreshToken:
        return _no_store(
            401,
            {"error": {"code": "invalid_refresh_token", "message": "Invalid refresh token."}},
        )
    content = TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=_EXPIRES_IN,
    ).model_dump(mode="json")
    return _no_store(200, content)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, session_id: str = Depends(get_session_id)) -> MessageResponse:
    """End the session the presented access token belongs to."""
    await _manager(request).logout(session_id)
    return MessageResponse(message="Logged out.")


@router.post("/auth/logout-all", response_model=MessageResponse)
async def logout_all(request: Request, current_user: UserView = Depends(get_current_user)) -> MessageResponse:
    """End every session of the current user, including this one."""
    await _manager(request).logout_all(current_user.id)
    return MessageResponse(message="All sessions logged out.")


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: UserView = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_view(current_user)


@router.patch("/auth/me", response_model=UserResponse)
async def update_me(
    request: Request,
    body: ProfilePatch,
    current_user: UserView = Depends(get_current_user),
) -> UserResponse:
    """Update the caller's email and/or settings. Role is admin-managed."""
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    updated = await _manager(request).update_user(current_user.id, **updates)
    return UserResponse.from_view(updated)


@router.post("/auth/password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: PasswordChange,
    current_user: UserView = Depends(get_current_user),
) -> MessageResponse:
    """Change the caller's password. Every session, including this one, is revoked."""
    try:
        await _manager(request).change_password(current_user.id, body.current_password, body.new_password)
    except InvalidCredentials as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "bad_credentials", "message": "Current password is incorrect."},
        ) from exc
    except PasswordPolicyError as exc:
        raise _password_policy(exc) from exc
    return MessageResponse(message="Password changed. Please log in again.")


@router.get("/auth/sessions", response_model=list[SessionResponse])
async def list_sessions(
    request: Request,
    session_id: str = Depends(get_session_id),
    current_user: UserView = Depends(get_current_user),
) -> list[SessionResponse]:
    """List the caller's live sessions. Token strings are never returned."""
    views = _manager(request).list_sessions(current_user.id)
    return [SessionResponse.from_view(v, session_id) for v in views]


@router.delete("/auth/sessions/{session_id}", status_code=204)
async def revoke_session(
    request: Request,
    session_id: str,
    current_user: UserView = Depends(get_current_user),
) -> Response:
    """Revoke one of the caller's sessions. Ownership is verified [IDOR guard]."""
    manager = _manager(request)
    owned = {v.id for v in manager.list_sessions(current_user.id)}
    if session_id not in owned:
        raise _not_found("Session not found.")
    await manager.logout(session_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    current_user: UserView = Depends(require_admin),
) -> UserResponse:
    """Create a new local account. Admin only."""
    try:
        created = await _manager(request).create_user(
            body.username, body.password, email=body.email, role=body.role.value
        )
    except DuplicateUsername as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc
    except PasswordPolicyError as exc:
        raise _password_policy(exc) from exc
    return UserResponse.from_view(created)


@router.get("/auth/users", response_model=list[UserResponse])
async def list_users(request: Request, current_user: UserView = Depends(require_admin)) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    return [UserResponse.from_view(u) for u in _manager(request).list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
async def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: UserView = Depends(require_admin),
) -> UserResponse:
    """Update a user's role, email or settings. Admin only.

    Refuses to demote the last admin (no recovery path without disk access).
    """
    manager = _manager(request)
    target = manager.get_user(user_id)
    if target is None:
        raise _not_found("User not found.")

    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    if "role" in updates:
        if updates["role"] is None:
            raise HTTPException(
                status_code=422,
                detail={"code": "validation_error", "message": "role may not be null."},
            )
        updates["role"] = updates["role"].value
        if target.role == ROLE_ADMIN and updates["role"] != ROLE_ADMIN and manager.store.count_admins() <= 1:
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot demote the last admin account."},
            )

    try:
        updated = await manager.update_user(user_id, **updates)
    except UserNotFound as exc:
        raise _not_found("User not found.") from exc
    return UserResponse.from_view(updated)


@router.delete("/auth/users/{user_id}", status_code=204)
async def delete_user(
    request: Request,
    user_id: str,
    current_user: UserView = Depends(require_admin),
) -> Response:
    """Delete a user and every session it owns. Admin only; no self-deletion."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    if not await _manager(request).delete_user(user_id):
        raise _not_found("User not found.")
    return Response(status_code=204)
