"""Chromium lifetime helpers and capture error types."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable

from playwright.async_api import Browser, async_playwright

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = ("--disable-blink-features=AutomationControlled", "--no-sandbox")

BrowserLauncher = Callable[[], AsyncContextManager[Browser]]


class CaptureError(RuntimeError):
    """Screenshot encode or write failure for one timeframe."""


class NavigationError(CaptureError):
    """The chart URL could not be loaded."""


class BrowserLaunchError(CaptureError):
    """The rendering surface could not be started."""


def chromium_launcher(headless: bool = True) -> BrowserLauncher:
    """Return a launcher yielding a fresh Chromium instance per call."""

    @asynccontextmanager
    async def _launch() -> AsyncIterator[Browser]:
        async with async_playwright() as playwright:
            try:
                browser = await playwright.chromium.launch(headless=headless, args=list(CHROMIUM_ARGS))
            except Exception as exc:
                raise BrowserLaunchError(f"Failed to launch Chromium: {exc}") from exc
            try:
                yield browser
            finally:
                try:
                    await browser.close()
                except Exception as exc:
                    logger.warning("Error closing browser: %s", exc)

    return _launch
