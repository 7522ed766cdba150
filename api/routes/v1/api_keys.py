"""
api/routes/v1/api_keys.py -- Encrypted third-party API key endpoints.

Routes:
  POST   /api/v1/api-keys        -- encrypt and store a key (admin only)
  GET    /api/v1/api-keys        -- list keys: id, name, timestamps (admin only)
  GET    /api/v1/api-keys/{id}   -- decrypt one key (admin only, stamps last_used)
  DELETE /api/v1/api-keys/{id}   -- delete a key (admin only)

The key namespace is global, so every route is admin-only. Values appear in
exactly one response shape (ApiKeyValueResponse) and are never logged.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import ApiKeyCreate, ApiKeyResponse, ApiKeyValueResponse
from auth.dependencies import require_admin
from auth.errors import DecryptionFailed
from auth.models import UserView
from auth.vault import SecretStore

logger = logging.getLogger("configstudio.api")

router = APIRouter()


def _vault(request: Request) -> SecretStore:
    return request.app.state.auth.vault


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "API key not found."})


@router.post("/api-keys", response_model=ApiKeyResponse, status_code=201)
async def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    current_user: UserView = Depends(require_admin),
) -> ApiKeyResponse:
    """Encrypt and store a key. The response echoes metadata only."""
    vault = _vault(request)
    key_id = await vault.store(body.name, body.value)
    view = next(v for v in vault.list_secrets() if v.id == key_id)
    return ApiKeyResponse.from_view(view)


@router.get("/api-keys", response_model=list[ApiKeyResponse])
async def list_api_keys(request: Request, current_user: UserView = Depends(require_admin)) -> list[ApiKeyResponse]:
    return [ApiKeyResponse.from_view(v) for v in _vault(request).list_secrets()]


@router.get("/api-keys/{key_id}", response_model=ApiKeyValueResponse)
async def get_api_key(
    request: Request,
    key_id: str,
    current_user: UserView = Depends(require_admin),
) -> ApiKeyValueResponse:
    """Return the decrypted value. A record that fails authentication is a 500, never garbage."""
    try:
        value = await _vault(request).get(key_id)
    except DecryptionFailed as exc:
        logger.error("API key %s failed integrity check", key_id)
        raise HTTPException(
            status_code=500,
            detail={"code": "decryption_failed", "message": "Stored key could not be decrypted."},
        ) from exc
    if value is None:
        raise _not_found()
    return ApiKeyValueResponse(id=key_id, value=value)


@router.delete("/api-keys/{key_id}", status_code=204)
async def delete_api_key(
    request: Request,
    key_id: str,
    current_user: UserView = Depends(require_admin),
) -> Response:
    if not await _vault(request).delete(key_id):
        raise _not_found()
    return Response(status_code=204)
