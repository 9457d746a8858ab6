"""Render request orchestration.

Pipeline per request, each stage terminal on failure:

    auth -> validate url -> SSRF check -> cache lookup
         -> render -> extract -> store screenshot -> assemble + cache

A cache hit returns the stored result untouched and skips everything after
the lookup. A hit whose screenshot has since left the cache counts as a
miss. Nothing is written to the cache unless rendering succeeded.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import SplitResult, urlsplit

from constants import ALLOWED_URL_SCHEMES, MAX_TEXT_LENGTH, RENDER_KEY_PREFIX
from core.cache import CacheService
from core.config import Settings
from core.exceptions import SSRFRejection, ValidationError
from core.logging import get_logger
from models.auth import Credentials, Principal
from models.render import RenderResult
from services.auth import AuthService
from services.extractor import Extractor
from services.images import ImageTokenService
from services.renderer import Renderer
from services.ssrf import SSRFGuard

logger = get_logger(__name__)


# Characters browsers read differently from urlsplit inside the authority:
# "\" is a path separator to Chromium, "@" starts userinfo, "%" decodes.
_AMBIGUOUS_NETLOC_CHARS = frozenset("\\@%")


def validate_render_url(url: Optional[str]) -> SplitResult:
    """Parse ``url`` and require an http(s) scheme and an unambiguous host.

    Callers must use ``geturl()`` of the result from here on, so the host
    that passed the SSRF check is the host the browser navigates to.
    """
    if not url or not isinstance(url, str) or not url.strip():
        raise ValidationError("missing url")
    try:
        parsed = urlsplit(url.strip())
        parsed.port  # raises ValueError on a malformed port
    except ValueError:
        raise ValidationError("invalid url")
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        raise ValidationError("unsupported protocol", detail=parsed.scheme or None)
    netloc = parsed.netloc
    if (not parsed.hostname
            or _AMBIGUOUS_NETLOC_CHARS.intersection(netloc)
            or any(ch.isspace() or not ch.isprintable() for ch in netloc)):
        raise ValidationError("invalid url")
    return parsed


class RenderOrchestrator:
    """Sequences auth, SSRF guard, cache and the render collaborators."""

    def __init__(
        self,
        auth: AuthService,
        ssrf_guard: SSRFGuard,
        cache: CacheService,
        renderer: Renderer,
        extractor: Extractor,
        images: ImageTokenService,
        settings: Settings,
    ):
        self.auth = auth
        self.ssrf_guard = ssrf_guard
        self.cache = cache
        self.renderer = renderer
        self.extractor = extractor
        self.images = images
        self.settings = settings
        # url -> in-flight render, only used with RENDER_SINGLE_FLIGHT
        self._inflight: Dict[str, asyncio.Future] = {}

    async def render(self, url: Optional[str], credentials: Credentials,
                     image_base_url: str) -> RenderResult:
        """Render ``url`` for an authenticated caller.

        ``image_base_url`` is the public base the image endpoint is reachable
        under, e.g. ``https://gateway.example/``.
        """
        principal = await self.auth.authenticate(credentials)
        return await self.render_as(principal, url, image_base_url)

    async def render_as(self, principal: Principal, url: Optional[str],
                        image_base_url: str) -> RenderResult:
        """Render for a caller the router already authenticated."""
        parsed = validate_render_url(url)
        url = parsed.geturl()

        if not await self.ssrf_guard.check_public(parsed.hostname):
            raise SSRFRejection(parsed.hostname)

        cache_key = RENDER_KEY_PREFIX + url
        cached = await self.cache.get(cache_key)
        if isinstance(cached, dict):
            result = RenderResult.model_validate(cached)
            if await self.images.exists(result.image_token):
                logger.info("Render cache hit", url=url, subject=principal.name)
                return result
            logger.info("Cached render lost its screenshot", url=url)

        logger.info("Rendering", url=url, subject=principal.name)
        if self.settings.render_single_flight:
            return await self._single_flight(url, lambda: self._render_fresh(url, image_base_url))
        return await self._render_fresh(url, image_base_url)

    async def _render_fresh(self, url: str, image_base_url: str) -> RenderResult:
        page = await self.renderer.render(url, timeout=self.settings.render_timeout_seconds)

        article = await self.extractor.extract(page.html, url)
        text = article.text if article and article.text else page.text
        text = (text or "")[:MAX_TEXT_LENGTH]
        title = article.title if article and article.title else page.title

        ttl = self.settings.cache_ttl_seconds
        token = await self.images.store(url, page.screenshot, ttl=ttl)

        result = RenderResult(
            url=url,
            title=title or "",
            text=text,
            article_html=article.html if article and article.html else None,
            image_url=f"{image_base_url.rstrip('/')}/image/{token}",
            image_token=token,
        )
        await self.cache.set(RENDER_KEY_PREFIX + url, result.model_dump(by_alias=True), ttl=ttl)
        return result

    async def _single_flight(self, url: str,
                             factory: Callable[[], Awaitable[RenderResult]]) -> RenderResult:
        """Collapse concurrent renders of the same url into one."""
        future = self._inflight.get(url)
        if future is None:
            future = asyncio.ensure_future(factory())
            self._inflight[url] = future
            future.add_done_callback(lambda done: self._forget(url, done))
        else:
            logger.info("Joining in-flight render", url=url)
        # A cancelled waiter must not cancel the render others are waiting on
        return await asyncio.shield(future)

    def _forget(self, url: str, done: asyncio.Future) -> None:
        if self._inflight.get(url) is done:
            del self._inflight[url]
        if not done.cancelled() and done.exception() is not None:
            logger.debug("In-flight render failed", url=url, error=str(done.exception()))
