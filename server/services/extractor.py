"""Readable-article extraction with readability-lxml."""

import asyncio
from typing import Optional, Protocol

from bs4 import BeautifulSoup
from lxml.etree import ParserError
from readability import Document
from readability.readability import Unparseable

from core.logging import get_logger
from models.render import Article

logger = get_logger(__name__)


class Extractor(Protocol):
    """Turns page markup into an Article, or None when nothing readable is found."""

    async def extract(self, html: str, url: str) -> Optional[Article]: ...


def _html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    return soup.get_text(separator="\n", strip=True)


class ReadabilityExtractor:
    """Mozilla-Readability style extraction; parsing runs in a worker thread."""

    async def extract(self, html: str, url: str) -> Optional[Article]:
        if not html or not html.strip():
            return None
        return await asyncio.to_thread(self._extract_sync, html, url)

    def _extract_sync(self, html: str, url: str) -> Optional[Article]:
        try:
            doc = Document(html, url=url)
            article_html = doc.summary(html_partial=True)
            title = doc.short_title() or doc.title() or ""
        except (Unparseable, ParserError, ValueError) as e:
            logger.info("Readability could not parse page", url=url, error=str(e))
            return None

        text = _html_to_text(article_html)
        if not text:
            return None
        # readability falls back to "[no-title]" when the page has no <title>
        if title == "[no-title]":
            title = ""
        return Article(title=title, text=text, html=article_html)
