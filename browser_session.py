#!/usr/bin/env python3
"""
Headless Chromium sessions backed by Playwright.

Each session owns its own Playwright driver, browser process and page, so
proxy and header settings never leak between captures. Sessions are bound
to the thread that opened them.
"""

import logging
from typing import Mapping, Optional

from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

VIEWPORT = {'width': 1920, 'height': 1080}
USER_AGENT = 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36'

# Minimal "page ready" signal: the document has a body.
READY_SELECTOR = 'body'


class BrowserSession:
    """A single-use browser context for one capture."""

    def __init__(self, playwright, browser, context, page):
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._closed = False

    def set_headers(self, headers: Mapping[str, str]) -> None:
        """Send ``headers`` with every subsequent request of this session."""
        self._context.set_extra_http_headers(dict(headers))

    def navigate(self, url: str, timeout_ms: float = 0) -> None:
        """
        Open ``url`` and block until the DOM content is loaded.

        Args:
            url: Page to load
            timeout_ms: Budget in milliseconds (0 disables it)
        """
        self._page.goto(url, wait_until='domcontentloaded', timeout=timeout_ms)

    def wait_until_ready(self, timeout_ms: float = 0) -> None:
        """Block until the body element is attached."""
        self._page.wait_for_selector(READY_SELECTOR, state='attached', timeout=timeout_ms)

    def screenshot(self, timeout_ms: float = 0) -> bytes:
        """Capture the current viewport as PNG bytes."""
        return self._page.screenshot(type='png', timeout=timeout_ms)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._browser.close()
        except Exception as e:
            logger.debug("Browser close failed: %s", e)
        try:
            self._playwright.stop()
        except Exception as e:
            logger.debug("Playwright stop failed: %s", e)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def open_session(proxy: Optional[str] = None, timeout_ms: float = 0) -> BrowserSession:
    """
    Launch a fresh headless Chromium and return a session around it.

    Args:
        proxy: Proxy server URL, applied at launch before any navigation
        timeout_ms: Launch budget in milliseconds (0 disables it)

    Returns:
        An open BrowserSession; the caller must close it
    """
    playwright = sync_playwright().start()
    try:
        launch_options = {'headless': True, 'timeout': timeout_ms}
        if proxy:
            launch_options['proxy'] = {'server': proxy}
        browser = playwright.chromium.launch(**launch_options)
        context = browser.new_context(viewport=VIEWPORT, user_agent=USER_AGENT)
        page = context.new_page()
    except Exception:
        playwright.stop()
        raise
    return BrowserSession(playwright, browser, context, page)
