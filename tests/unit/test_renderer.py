"""Tests for the Playwright renderer's context handling, with the browser mocked."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.exceptions import RenderError
from services.renderer import PlaywrightRenderer


def _mock_browser(page):
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()

    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.new_context = AsyncMock(return_value=context)
    return browser, context


def _mock_page():
    page = MagicMock()
    page.goto = AsyncMock()
    page.content = AsyncMock(return_value="<html><body><p>hi</p></body></html>")
    page.title = AsyncMock(return_value="T")
    page.evaluate = AsyncMock(return_value="hi")
    page.screenshot = AsyncMock(return_value=b"\x89PNG")
    return page


def _tracking_browser(page):
    """Browser whose contexts record how many are open at once."""
    open_contexts = []
    peaks = []

    async def new_context(**kwargs):
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)

        async def close():
            open_contexts.remove(context)

        context.close = AsyncMock(side_effect=close)
        open_contexts.append(context)
        peaks.append(len(open_contexts))
        return context

    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.new_context = AsyncMock(side_effect=new_context)
    return browser, open_contexts, peaks


def _gated_page(gate: asyncio.Event):
    page = _mock_page()

    async def goto(*args, **kwargs):
        await gate.wait()

    page.goto.side_effect = goto
    return page


@pytest.mark.asyncio
async def test_render_returns_page_and_closes_context(settings):
    page = _mock_page()
    browser, context = _mock_browser(page)
    renderer = PlaywrightRenderer(settings)
    renderer._browser = browser

    rendered = await renderer.render("https://example.com", timeout=5)

    assert rendered.title == "T"
    assert rendered.text == "hi"
    assert rendered.screenshot == b"\x89PNG"
    page.goto.assert_awaited_once_with("https://example.com", wait_until="networkidle",
                                       timeout=5000)
    context.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_navigation_timeout_becomes_render_error(settings):
    page = _mock_page()
    page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded")
    browser, context = _mock_browser(page)
    renderer = PlaywrightRenderer(settings)
    renderer._browser = browser

    with pytest.raises(RenderError) as exc_info:
        await renderer.render("https://slow.example", timeout=5)

    assert "navigation timeout" in exc_info.value.detail
    context.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_browser_error_becomes_render_error(settings):
    page = _mock_page()
    page.screenshot.side_effect = PlaywrightError("Target closed")
    browser, context = _mock_browser(page)
    renderer = PlaywrightRenderer(settings)
    renderer._browser = browser

    with pytest.raises(RenderError):
        await renderer.render("https://example.com", timeout=5)
    context.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_context_per_render(settings):
    page = _mock_page()
    browser, _ = _mock_browser(page)
    renderer = PlaywrightRenderer(settings)
    renderer._browser = browser

    await renderer.render("https://example.com/a", timeout=5)
    await renderer.render("https://example.com/b", timeout=5)

    assert browser.new_context.await_count == 2


@pytest.mark.asyncio
async def test_concurrency_bounds_open_contexts(settings):
    settings.render_concurrency = 1
    gate = asyncio.Event()
    browser, open_contexts, peaks = _tracking_browser(_gated_page(gate))
    renderer = PlaywrightRenderer(settings)
    renderer._browser = browser

    tasks = [asyncio.ensure_future(renderer.render(f"https://example.com/{n}", timeout=5))
             for n in range(3)]
    await asyncio.sleep(0.05)
    assert browser.new_context.await_count == 1

    gate.set()
    await asyncio.gather(*tasks)

    assert browser.new_context.await_count == 3
    assert max(peaks) == 1
    assert open_contexts == []


@pytest.mark.asyncio
async def test_deadline_includes_wait_for_a_slot(settings):
    settings.render_concurrency = 1
    gate = asyncio.Event()
    browser, open_contexts, _ = _tracking_browser(_gated_page(gate))
    renderer = PlaywrightRenderer(settings)
    renderer.deadline_slack = 0
    renderer._browser = browser

    holder = asyncio.ensure_future(renderer.render("https://example.com/a", timeout=5))
    await asyncio.sleep(0.01)

    with pytest.raises(RenderError) as exc_info:
        await renderer.render("https://example.com/b", timeout=0.05)

    assert "deadline" in exc_info.value.detail
    assert browser.new_context.await_count == 1

    gate.set()
    await holder
    assert open_contexts == []
