"""Shared fixtures: fake Playwright objects, images, and a settable clock."""

from __future__ import annotations

import io
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from models.capture_models import CaptureRequest, StudyResult, TimeframeAttempt
from models.chart_config import ChartConfig, Study, Timeframe, Viewport
from services.capture.page_scripts import INJECT_STUDIES_JS


def encode_image(fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


@dataclass
class PageBehaviour:
    """How the fake page for one chart interval behaves."""

    goto_error: Optional[Exception] = None
    canvas_missing: bool = False
    study_outcome: Any = None
    study_error: Optional[Exception] = None
    screenshot_failures: int = 0
    dismiss_error: bool = False


@dataclass
class FakeDialog:
    dismissed: bool = False

    async def dismiss(self) -> None:
        self.dismissed = True


class FakePage:
    def __init__(self, browser: "FakeBrowser") -> None:
        self.browser = browser
        self.interval: Optional[str] = None
        self.closed = False
        self.handlers: Dict[str, Any] = {}
        self.screenshot_calls: List[Dict[str, Any]] = []

    @property
    def behaviour(self) -> PageBehaviour:
        return self.browser.behaviours.get(self.interval, PageBehaviour())

    def on(self, event: str, handler: Any) -> None:
        self.handlers[event] = handler

    async def goto(self, url: str, wait_until: str = "load") -> None:
        self.interval = url.rsplit("/", 1)[-1]
        self.browser.visited.append(self.interval)
        if self.behaviour.goto_error is not None:
            raise self.behaviour.goto_error

    async def wait_for_selector(self, selector: str, timeout: float = 0) -> None:
        if self.behaviour.canvas_missing:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == INJECT_STUDIES_JS:
            if self.behaviour.study_error is not None:
                raise self.behaviour.study_error
            if self.behaviour.study_outcome is not None:
                return self.behaviour.study_outcome
            return {"ok": True, "results": [{"id": s["id"], "ok": True} for s in arg]}
        if self.behaviour.dismiss_error:
            raise RuntimeError("Execution context was destroyed")
        return 0

    async def screenshot(self, path: Optional[str] = None, type: str = "png", quality: Optional[int] = None) -> bytes:
        self.screenshot_calls.append({"path": path, "type": type, "quality": quality})
        if len(self.screenshot_calls) <= self.behaviour.screenshot_failures:
            raise RuntimeError("Screenshot write failed")
        data = encode_image("JPEG" if type == "jpeg" else "PNG")
        if path is not None:
            with open(path, "wb") as fh:
                fh.write(data)
        return data

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: Dict[str, Any]) -> None:
        self.browser = browser
        self.options = options
        self.closed = False

    async def new_page(self) -> FakePage:
        if self.browser.crash_after is not None and len(self.browser.pages) >= self.browser.crash_after:
            raise RuntimeError("Target page, context or browser has been closed")
        page = FakePage(self.browser)
        self.browser.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, behaviours: Optional[Dict[str, PageBehaviour]] = None, crash_after: Optional[int] = None) -> None:
        self.behaviours = behaviours or {}
        self.crash_after = crash_after
        self.contexts: List[FakeContext] = []
        self.pages: List[FakePage] = []
        self.visited: List[str] = []
        self.closed = False

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(self, options)
        self.contexts.append(context)
        return context

    def launcher(self):
        @asynccontextmanager
        async def _launch():
            try:
                yield self
            finally:
                self.closed = True

        return _launch


class StubPipeline:
    """Returns canned attempts: captured unless the code is listed in `fail`."""

    def __init__(
        self,
        config: ChartConfig,
        image: bytes,
        fail=(),
        raises: Optional[Exception] = None,
        degraded=(),
        study_failures: Optional[Dict[str, str]] = None,
    ) -> None:
        self.config = config
        self.image = image
        self.fail = set(fail)
        self.degraded = set(degraded)
        self.study_failures = study_failures or {}
        self.raises = raises
        self.requests: List[CaptureRequest] = []

    async def run(self, request: CaptureRequest) -> List[TimeframeAttempt]:
        self.requests.append(request)
        if self.raises is not None:
            raise self.raises
        attempts = []
        for tf in self.config.select_timeframes(request.timeframes):
            attempt = TimeframeAttempt(timeframe=tf, degraded=tf.code in self.degraded)
            attempt.studies = {
                s.id: StudyResult(applied=s.id not in self.study_failures, error=self.study_failures.get(s.id))
                for s in self.config.studies
            }
            if tf.code in self.fail:
                attempt.fail("Navigation to chart failed: timeout")
            else:
                attempt.mark_captured(buffer=self.image)
            attempts.append(attempt)
        return attempts


class ManualClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def chart_url(symbol: str, interval: str) -> str:
    return f"https://charts.test/{symbol}/{interval}"


TEST_CONFIG = ChartConfig(
    symbol="XAUUSD",
    timeframes=(
        Timeframe(value="5", label="5 Min", code="5M"),
        Timeframe(value="15", label="15 Min", code="15M"),
        Timeframe(value="30", label="30 Min", code="30M"),
        Timeframe(value="60", label="1H", code="1H"),
        Timeframe(value="240", label="4H", code="4H"),
    ),
    studies=(
        Study(id="MASimple@tv-basicstudies", plot_name="MovAvgSimple", inputs={"length": 265}),
        Study(id="MAExp@tv-basicstudies", plot_name="MovAvgExp", inputs={"length": 75}),
    ),
    viewport=Viewport(1920, 1200),
)


@pytest.fixture
def chart_config() -> ChartConfig:
    return TEST_CONFIG


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def make_browser():
    return FakeBrowser


@pytest.fixture
def behaviour():
    return PageBehaviour


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def png_bytes() -> bytes:
    return encode_image("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return encode_image("JPEG")


@pytest.fixture
def url_builder():
    return chart_url


@pytest.fixture
def fake_dialog():
    return FakeDialog()


@pytest.fixture
def stub_pipeline():
    return StubPipeline
