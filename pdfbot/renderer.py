"""Playwright-based PDF rendering."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol

from playwright.async_api import Browser, BrowserContext, async_playwright

LOGGER = logging.getLogger(__name__)


class RenderedDocumentHandle(Protocol):
    async def to_file(self, path: Path) -> Path: ...


class RenderingEngine(Protocol):
    async def create(self, url: str, options: Mapping[str, Any]) -> RenderedDocumentHandle: ...


@dataclass(slots=True)
class RenderedDocument:
    """PDF bytes produced by a render, not yet written anywhere."""

    url: str
    pdf_bytes: bytes

    async def to_file(self, path: Path) -> Path:
        await asyncio.to_thread(_write_bytes, path, self.pdf_bytes)
        return path


class PlaywrightRenderer:
    """Drive headless Chromium to print a page as PDF.

    Recognized option keys: ``goto`` (kwargs for ``page.goto``), ``viewport``,
    ``extra_http_headers``, ``cookies``, ``emulate_media`` and ``pdf`` (kwargs
    for ``page.pdf``). Unknown keys are ignored.
    """

    def __init__(self, *, channel: str = "chromium") -> None:
        self._channel = channel

    async def create(self, url: str, options: Mapping[str, Any]) -> RenderedDocument:
        async with async_playwright() as playwright:
            browser = await _launch_browser(playwright, self._channel)
            context = await _build_context(browser, options)
            try:
                page = await context.new_page()
                await page.goto(url, **dict(options.get("goto") or {}))
                media = options.get("emulate_media")
                if media:
                    await page.emulate_media(media=media)
                pdf_bytes = await page.pdf(**dict(options.get("pdf") or {}))
            finally:
                await context.close()
                await browser.close()
        LOGGER.debug("Rendered %s (%d bytes)", url, len(pdf_bytes))
        return RenderedDocument(url=url, pdf_bytes=pdf_bytes)


async def _launch_browser(playwright, channel: str) -> Browser:
    normalized = (channel or "chromium").strip().lower()
    LOGGER.debug("launching chromium", extra={"channel": normalized})
    return await playwright.chromium.launch(channel=normalized, headless=True)


async def _build_context(browser: Browser, options: Mapping[str, Any]) -> BrowserContext:
    context_options: dict[str, Any] = {}
    viewport = options.get("viewport")
    if viewport:
        context_options["viewport"] = dict(viewport)
    headers = options.get("extra_http_headers")
    if headers:
        context_options["extra_http_headers"] = dict(headers)
    context = await browser.new_context(**context_options)
    cookies = options.get("cookies")
    if cookies:
        await context.add_cookies(list(cookies))
    return context


def _write_bytes(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
