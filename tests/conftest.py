from __future__ import annotations

import threading
import time
from typing import Dict, Iterable, List, Optional

import pytest

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


class FakeSession:
    def __init__(self, browser: "FakeBrowser", proxy: Optional[str], timeout_ms: float):
        self.browser = browser
        self.proxy = proxy
        self.timeout_ms = timeout_ms
        self.headers: Dict[str, str] = {}
        self.calls: List[str] = []
        self.budgets: Dict[str, float] = {}
        self.closed = False

    def set_headers(self, headers) -> None:
        self.calls.append("set_headers")
        self.headers = dict(headers)

    def navigate(self, url: str, timeout_ms: float) -> None:
        self.calls.append("navigate")
        self.budgets["navigate"] = timeout_ms
        self.browser.record_visit(url)
        if self.browser.delay:
            time.sleep(self.browser.delay)
        error = self.browser.errors.get(url)
        if error is not None:
            raise error

    def wait_until_ready(self, timeout_ms: float) -> None:
        self.calls.append("wait_until_ready")
        self.budgets["wait_until_ready"] = timeout_ms

    def screenshot(self, timeout_ms: float) -> bytes:
        self.calls.append("screenshot")
        self.budgets["screenshot"] = timeout_ms
        return self.browser.image

    def close(self) -> None:
        self.calls.append("close")
        self.closed = True
        self.browser.release()


class FakeBrowser:
    """Session factory standing in for Chromium; tracks concurrency."""

    def __init__(
        self,
        *,
        image: bytes = PNG_BYTES,
        errors: Optional[Dict[str, BaseException]] = None,
        failing: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.image = image
        self.errors = dict(errors or {})
        for url in failing:
            self.errors[url] = RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.delay = delay
        self.sessions: List[FakeSession] = []
        self.visited: List[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, proxy: Optional[str], timeout_ms: float) -> FakeSession:
        session = FakeSession(self, proxy, timeout_ms)
        with self._lock:
            self.sessions.append(session)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        return session

    def record_visit(self, url: str) -> None:
        with self._lock:
            self.visited.append(url)

    def release(self) -> None:
        with self._lock:
            self.active -= 1


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()
