"""Render request/response models and collaborator payloads."""

from dataclasses import dataclass
from typing import Optional
from pydantic import BaseModel

from models.auth import CamelModel


class RenderRequest(BaseModel):
    """Body of POST /render. ``url`` is validated by the orchestrator."""

    url: Optional[str] = None


class RenderResult(CamelModel):
    """Cached and returned unchanged on every hit within the TTL."""

    url: str
    title: str
    text: str
    article_html: Optional[str] = None
    image_url: str
    image_token: str


@dataclass
class RenderedPage:
    """What the renderer hands back for one navigation."""

    html: str
    title: str
    text: str
    screenshot: bytes


@dataclass
class Article:
    """Readable article extracted from page markup."""

    title: str
    text: str
    html: Optional[str] = None
