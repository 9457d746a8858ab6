"""Per-client rate limiting middleware."""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from constants import RATE_LIMIT_EXEMPT_PATHS
from core.container import container
from core.exceptions import RateLimitExceeded
from core.logging import get_logger

logger = get_logger(__name__)


def client_identity(request: Request) -> str:
    """Identity a request is counted against (client IP)."""
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed 60s window per client IP; 429 once the budget is spent."""

    async def dispatch(self, request: Request, call_next):
        settings = container.settings()
        if not settings.rate_limit_enabled or request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        identity = client_identity(request)
        decision = container.rate_limiter().hit(identity)
        headers = {
            "RateLimit-Limit": str(decision.limit),
            "RateLimit-Remaining": str(decision.remaining),
            "RateLimit-Reset": str(decision.reset_after),
        }

        if not decision.allowed:
            logger.warning("Rate limit exceeded", client=identity, path=request.url.path)
            error = RateLimitExceeded(decision.reset_after)
            headers["Retry-After"] = str(decision.reset_after)
            return JSONResponse(status_code=error.status_code, content=error.to_dict(),
                                headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response
