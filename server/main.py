"""
Render gateway: authenticated URL rendering with SSRF protection and caching.

Clients exchange an API key for a bearer token, post URLs to /render and
fetch screenshots from /image/{token}.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.config import Settings
from core.exceptions import CacheBackendError, GatewayError
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.rate_limit import RateLimitMiddleware
from middleware.security import BodySizeLimitMiddleware, PayloadTooLarge, SecurityHeadersMiddleware
from routers import auth, render

# Initialize settings and logging
settings = Settings()
configure_logging(settings)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    app_settings = container.settings()
    logger.info("Starting render gateway")
    if app_settings.uses_default_secrets:
        logger.warning("JWT_SECRET or ADMIN_KEY left at default value - set both in production")

    set_startup_time()
    await container.cache().startup()
    await container.renderer().startup()

    logger.info("Services started successfully", cache_backend=container.cache().backend_name)
    yield

    # Shutdown
    await container.renderer().shutdown()
    await container.cache().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Render Gateway",
    version="1.0.0",
    description="Authenticated page rendering with readable-text extraction and screenshots",
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    if isinstance(exc, CacheBackendError):
        logger.error("Cache backend error", operation=exc.operation, cache_key=exc.key,
                     error=str(exc.cause))
    elif exc.status_code >= 500:
        logger.error(exc.message, path=request.url.path, detail=exc.detail)
    else:
        logger.info("Request rejected", path=request.url.path, error=exc.category,
                    message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PayloadTooLarge)
async def payload_too_large_handler(request: Request, exc: PayloadTooLarge):
    logger.info("Request rejected", path=request.url.path, error="payload_too_large")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "validation_error", "message": "malformed request body",
                 "detail": str(exc.errors()[:1])},
    )


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "server_error",
                    "message": "Internal server error",
                }
            )


# Outermost last: security headers, body limit, catch-all, rate limit
app.add_middleware(RateLimitMiddleware)
app.add_middleware(CatchAllExceptionsMiddleware)
app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


# Include routers
app.include_router(auth.router)
app.include_router(render.router)


@app.get("/health")
async def health_check():
    """Cache reachability and process stats."""
    return await get_health_status(container.cache())


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting render gateway",
               host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers
    )
