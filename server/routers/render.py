"""Render and image retrieval routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import Response
from pydantic import ValidationError as PydanticValidationError

from constants import API_KEY_HEADER, IMAGE_MEDIA_TYPE
from core.container import container
from core.exceptions import ValidationError
from models.auth import Credentials
from models.render import RenderRequest, RenderResult
from services.images import ImageTokenService
from services.render import RenderOrchestrator

router = APIRouter(tags=["render"])


def get_render_orchestrator() -> RenderOrchestrator:
    return container.render_orchestrator()


def get_image_service() -> ImageTokenService:
    return container.image_service()


def get_credentials(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
) -> Credentials:
    """Pull the bearer token and/or raw API key off the request headers."""
    bearer = None
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            bearer = value.strip()
    return Credentials(bearer_token=bearer, api_key=x_api_key or None)


async def read_render_request(request: Request) -> RenderRequest:
    """Parse the POST /render body; an empty body is a request with no url."""
    raw = await request.body()
    if not raw.strip():
        return RenderRequest()
    try:
        return RenderRequest.model_validate_json(raw)
    except PydanticValidationError as e:
        raise ValidationError("malformed request body", detail=str(e.errors()[:1]))


@router.post(
    "/render",
    response_model=RenderResult,
    openapi_extra={
        "requestBody": {
            "content": {"application/json": {"schema": RenderRequest.model_json_schema()}},
        },
    },
)
async def render_url(
    request: Request,
    credentials: Credentials = Depends(get_credentials),
    orchestrator: RenderOrchestrator = Depends(get_render_orchestrator),
):
    """
    Render a URL, returning title, readable text, article HTML and a
    link to the screenshot. Results are cached per URL.

    The body is read only after the caller authenticates.
    """
    principal = await orchestrator.auth.authenticate(credentials)
    body = await read_render_request(request)
    return await orchestrator.render_as(
        principal,
        body.url,
        image_base_url=str(request.base_url),
    )


@router.get("/image/{token}")
async def get_image(
    token: str,
    images: ImageTokenService = Depends(get_image_service),
):
    """Screenshot by token. Unauthenticated; the token itself is the capability."""
    blob = await images.get(token)
    return Response(content=blob, media_type=IMAGE_MEDIA_TYPE)
