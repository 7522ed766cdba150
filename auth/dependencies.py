"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access gate:
  authenticate(required) builds a dependency that reads
  "Authorization: Bearer <token>", asks SessionManager.verify_token() and,
  on success, attaches the safe-view user and the session id to
  request.state.user / request.state.session_id for downstream handlers.

    required=True  -- missing, malformed or rejected token -> HTTP 401.
    required=False -- the same cases pass through anonymously (None).

  get_current_user / get_optional_user are the two prebuilt variants.

Role gate:
  require_role(role) raises 401 when no user is attached and 403 when the
  role is not satisfied. Only an exact "admin" requirement is enforced;
  there is no role hierarchy.

The SessionManager comes from request.app.state.auth (built by the lifespan),
never from a module global.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.manager import SessionManager
from auth.models import ROLE_ADMIN, UserView


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"code": "unauthorized", "message": message})


def authenticate(required: bool = True):
    """Return a dependency enforcing (or merely attempting) bearer authentication."""

    async def dependency(request: Request) -> UserView | None:
        manager: SessionManager = request.app.state.auth.sessions
        token = _bearer_token(request)
        if token is None:
            if required:
                raise _unauthorized("No token provided.")
            return None

        payload = await manager.verify_token(token)
        user = manager.get_user(payload.user_id) if payload is not None else None
        if payload is None or user is None:
            if required:
                raise _unauthorized("Invalid or expired token.")
            return None

        request.state.user = user
        request.state.session_id = payload.session_id
        return user

    return dependency


get_current_user = authenticate(required=True)
get_optional_user = authenticate(required=False)


def require_role(role: str):
    """Return a dependency that requires an authenticated user holding role."""

    async def dependency(user: UserView | None = Depends(get_optional_user)) -> UserView:
        if user is None:
            raise HTTPException(
                status_code=401,
                detail={"code": "unauthorized", "message": "Not authenticated."},
            )
        if role == ROLE_ADMIN and user.role != ROLE_ADMIN:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Admin access required."},
            )
        return user

    return dependency


require_admin = require_role(ROLE_ADMIN)


def get_session_id(request: Request, user: UserView = Depends(get_current_user)) -> str:
    """Return the session id attached by the access gate."""
    return request.state.session_id
