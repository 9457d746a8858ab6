"""Dependency injection container for the application."""

from dependency_injector import containers, providers

from constants import RATE_LIMIT_WINDOW_SECONDS
from core.config import Settings
from core.cache import CacheService
from services.auth import AuthService
from services.extractor import ReadabilityExtractor
from services.images import ImageTokenService
from services.rate_limit import FixedWindowRateLimiter
from services.render import RenderOrchestrator
from services.renderer import PlaywrightRenderer
from services.ssrf import DnsResolver, SSRFGuard


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    # Settings
    settings = providers.Singleton(
        Settings,
    )

    # Cache service (Redis when REDIS_URL is reachable, in-process otherwise)
    cache = providers.Singleton(
        CacheService,
        settings=settings
    )

    # Collaborators
    dns_resolver = providers.Singleton(
        DnsResolver
    )

    renderer = providers.Singleton(
        PlaywrightRenderer,
        settings=settings
    )

    extractor = providers.Singleton(
        ReadabilityExtractor
    )

    rate_limiter = providers.Singleton(
        FixedWindowRateLimiter,
        limit=settings.provided.rate_limit_per_min,
        window_seconds=RATE_LIMIT_WINDOW_SECONDS
    )

    # Services
    auth_service = providers.Factory(
        AuthService,
        cache=cache,
        settings=settings
    )

    ssrf_guard = providers.Singleton(
        SSRFGuard,
        resolver=dns_resolver
    )

    image_service = providers.Factory(
        ImageTokenService,
        cache=cache
    )

    # Singleton: holds the single-flight map
    render_orchestrator = providers.Singleton(
        RenderOrchestrator,
        auth=auth_service,
        ssrf_guard=ssrf_guard,
        cache=cache,
        renderer=renderer,
        extractor=extractor,
        images=image_service,
        settings=settings
    )


# Global container instance
container = Container()
