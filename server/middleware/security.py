"""Security headers and request body size limit."""

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from constants import SECURITY_HEADERS
from core.container import container


class PayloadTooLarge(HTTPException):
    """Request body went past MAX_BODY_BYTES while being read.

    An HTTPException so FastAPI's body parsing re-raises it instead of
    reporting a generic parse error.
    """

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(status_code=413, detail=f"request body exceeds {limit} bytes")

    def to_dict(self):
        return {"error": "payload_too_large", "message": self.detail}


class BodySizeLimitMiddleware:
    """Caps request bodies at MAX_BODY_BYTES.

    A declared Content-Length over the cap is refused before the app runs.
    Bodies without one (chunked) are counted as they stream in and the read
    that crosses the cap raises PayloadTooLarge.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = container.settings().max_body_bytes
        content_length = Headers(scope=scope).get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > limit:
            response = JSONResponse(status_code=413, content=PayloadTooLarge(limit).to_dict())
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    raise PayloadTooLarge(limit)
            return message

        await self.app(scope, limited_receive, send)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds hardening headers to every response, errors included."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
