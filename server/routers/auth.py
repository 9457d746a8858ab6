"""Authentication routes: API key issuance and token exchange."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Header

from constants import ADMIN_KEY_HEADER, API_KEY_HEADER
from core.container import container
from core.exceptions import ValidationError
from core.logging import get_logger
from models.auth import CreateKeyRequest, CreateKeyResponse, TokenRequest, TokenResponse
from services.auth import AuthService

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def get_auth_service() -> AuthService:
    return container.auth_service()


@router.post("/create-key", response_model=CreateKeyResponse)
async def create_key(
    request: Optional[CreateKeyRequest] = Body(default=None),
    x_admin_key: Optional[str] = Header(default=None, alias=ADMIN_KEY_HEADER),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Create an API key. Privileged: requires the X-Admin-Key secret.
    The raw key is only ever returned here; the caller must store it.
    """
    auth.verify_admin_secret(x_admin_key)
    name = request.name if request and request.name else "unnamed"
    record = await auth.create_api_key(name)
    return CreateKeyResponse(api_key=record.id, record=record)


@router.post("/token", response_model=TokenResponse)
async def issue_token(
    request: Optional[TokenRequest] = Body(default=None),
    x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
    auth: AuthService = Depends(get_auth_service),
):
    """
    Exchange an API key (X-API-Key header or {"apiKey": ...} body)
    for a short-lived bearer token.
    """
    key = x_api_key or (request.api_key if request else None)
    if not key:
        raise ValidationError("missing api key")
    return await auth.issue_token(key)
