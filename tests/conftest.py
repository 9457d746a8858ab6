"""Pytest configuration and fixtures."""

import asyncio
import socket
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from core.cache import CacheService, MemoryCacheBackend
from core.config import Settings
from models.render import Article, RenderedPage
from services.auth import AuthService
from services.extractor import ReadabilityExtractor
from services.images import ImageTokenService
from services.render import RenderOrchestrator
from services.ssrf import SSRFGuard

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256))


# =============================================================================
# Fakes for external collaborators
# =============================================================================


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResolver:
    """DNS answers keyed by hostname and family; anything missing fails."""

    def __init__(self, answers: Optional[Dict[str, Dict[int, List[str]]]] = None):
        self.answers = answers or {}
        self.calls: List[tuple] = []

    def add(self, hostname: str, ipv4: List[str] = None, ipv6: List[str] = None,
            any_family: List[str] = None) -> None:
        self.answers[hostname] = {
            socket.AF_INET: ipv4 or [],
            socket.AF_INET6: ipv6 or [],
            socket.AF_UNSPEC: any_family or [],
        }

    async def resolve(self, hostname: str, family) -> List[str]:
        self.calls.append((hostname, family))
        addresses = self.answers.get(hostname, {}).get(family)
        if not addresses:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return list(addresses)

    async def lookup_all(self, hostname: str) -> List[str]:
        return await self.resolve(hostname, socket.AF_UNSPEC)


class FakeRenderer:
    """Returns a canned page and counts invocations."""

    def __init__(self, page: Optional[RenderedPage] = None, error: Exception = None,
                 gate: asyncio.Event = None):
        self.page = page or RenderedPage(html="<p>hi</p>", title="T", text="hi",
                                         screenshot=PNG_BYTES)
        self.error = error
        self.gate = gate
        self.calls: List[str] = []
        self.started = False

    async def startup(self) -> None:
        self.started = True

    async def shutdown(self) -> None:
        self.started = False

    async def render(self, url: str, timeout: float) -> RenderedPage:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.page


class FakeExtractor:

    def __init__(self, article: Optional[Article] = None):
        self.article = article
        self.calls: List[tuple] = []

    async def extract(self, html: str, url: str) -> Optional[Article]:
        self.calls.append((html, url))
        return self.article


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        jwt_secret="test-jwt-secret",
        admin_key="test-admin-key",
        rate_limit_per_min=1000,
        cache_ttl_seconds=300,
        log_level="WARNING",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def cache(settings: Settings, clock: FakeClock):
    service = CacheService(settings, backend=MemoryCacheBackend(clock=clock))
    await service.startup()
    yield service
    await service.shutdown()


@pytest.fixture
def auth_service(cache: CacheService, settings: Settings) -> AuthService:
    return AuthService(cache=cache, settings=settings)


@pytest.fixture
def resolver() -> FakeResolver:
    resolver = FakeResolver()
    resolver.add("example.com", ipv4=["93.184.215.14"], ipv6=["2606:2800:21f:cb07:6820:80da:af6b:8b2c"])
    resolver.add("internal.test", ipv4=["127.0.0.1"])
    return resolver


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor(Article(title="T", text="hi", html="<p>hi</p>"))


@pytest.fixture
def orchestrator(auth_service, resolver, cache, renderer, extractor, settings) -> RenderOrchestrator:
    return RenderOrchestrator(
        auth=auth_service,
        ssrf_guard=SSRFGuard(resolver=resolver),
        cache=cache,
        renderer=renderer,
        extractor=extractor,
        images=ImageTokenService(cache),
        settings=settings,
    )


@pytest.fixture
def readability_extractor() -> ReadabilityExtractor:
    return ReadabilityExtractor()


@pytest.fixture
def article_html() -> str:
    """Return a small but realistic article page."""
    paragraph = (
        "The committee met on Tuesday to review the proposal for the new river crossing, "
        "and after several hours of discussion agreed to fund a detailed engineering study. "
    )
    return f"""<html>
<head><title>River crossing study approved</title></head>
<body>
  <nav><a href="/">Home</a> <a href="/news">News</a></nav>
  <article>
    <h1>River crossing study approved</h1>
    <p>{paragraph * 3}</p>
    <p>{paragraph * 2}</p>
    <p>{paragraph * 4}</p>
  </article>
  <footer>Copyright</footer>
</body>
</html>"""
