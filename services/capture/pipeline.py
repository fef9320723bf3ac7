"""Drive a headless chart page through load, inject, settle and capture.

One `CapturePipeline.run` call owns one browser and one browsing context.
Timeframes are processed one page at a time, in the order they were
requested, and each produces a `TimeframeAttempt` that ends either captured
or failed. Study injection failures are recorded but never fail an attempt,
a missing render hint only degrades it, and a browser-level failure fails the
attempts that had not finished yet while keeping the ones already captured.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import BrowserContext, Dialog, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from models.capture_models import AttemptStatus, CaptureRequest, OutputMode, StudyResult, TimeframeAttempt
from models.chart_config import ChartConfig
from services.artifact_store import ArtifactStore
from services.capture.browser import BrowserLauncher, NavigationError, chromium_launcher
from services.capture.chart_url import build_chart_url
from services.capture.page_scripts import (
    CONFIRMATION_BUTTON_LABELS,
    DISMISS_CONFIRMATIONS_JS,
    DISMISS_OVERLAYS_JS,
    INJECT_STUDIES_JS,
)

logger = logging.getLogger(__name__)

RENDER_HINT_SELECTOR = "canvas"
CONFIRMATION_PAUSE = 0.3


async def _dismiss_dialog(dialog: Dialog) -> None:
    try:
        await dialog.dismiss()
    except Exception as exc:
        logger.debug("Dialog dismissal failed: %s", exc)


class CapturePipeline:
    """Capture chart screenshots for a set of timeframes.

    Args:
        config: Symbol, timeframes, studies and wait/retry settings.
        launcher: Factory returning an async context manager that yields a
            browser. Defaults to a headless Chromium launcher.
        artifact_store: Where persist-mode screenshots are written.
        url_builder: Maps `(symbol, interval)` to a navigable chart URL.
        sleep: Awaitable used for every fixed wait.
    """

    def __init__(
        self,
        config: ChartConfig,
        launcher: Optional[BrowserLauncher] = None,
        artifact_store: Optional[ArtifactStore] = None,
        url_builder: Callable[[str, str], str] = build_chart_url,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._launcher = launcher or chromium_launcher()
        self.artifact_store = artifact_store
        self._url_builder = url_builder
        self._sleep = sleep

    async def run(self, request: CaptureRequest) -> List[TimeframeAttempt]:
        """Run one capture pass and return an attempt per selected timeframe."""
        attempts = [TimeframeAttempt(timeframe=tf) for tf in self.config.select_timeframes(request.timeframes)]
        if not attempts:
            return attempts

        if request.output_mode is OutputMode.PERSIST:
            if self.artifact_store is None:
                raise ValueError("Persist mode requires an artifact store.")
            self.artifact_store.ensure_directory()

        viewport = request.render.viewport or self.config.viewport
        try:
            async with self._launcher() as browser:
                context = await browser.new_context(
                    viewport=viewport.as_dict(),
                    locale=self.config.locale,
                    timezone_id=self.config.timezone_id,
                )
                try:
                    for attempt in attempts:
                        await self._run_attempt(context, attempt, request)
                finally:
                    try:
                        await context.close()
                    except Exception as exc:
                        logger.warning("Error closing browser context: %s", exc)
        except Exception as exc:
            logger.error("Capture run aborted: %s", exc)
            for attempt in attempts:
                if not attempt.is_terminal:
                    attempt.fail(f"Rendering surface failed: {exc}")

        return attempts

    async def _run_attempt(self, context: BrowserContext, attempt: TimeframeAttempt, request: CaptureRequest) -> None:
        # new_page failures mean the browser itself is gone; let them abort the run.
        page = await context.new_page()
        page.on("dialog", _dismiss_dialog)
        try:
            await self._load(page, attempt)
            await self._sleep(self.config.wait_time)
            await self._evaluate_quietly(page, DISMISS_OVERLAYS_JS)

            attempt.studies = await self._inject_studies(page)
            attempt.status = AttemptStatus.STUDIES_APPLIED

            await self._sleep(self.config.study_wait_time)
            await self._evaluate_quietly(page, DISMISS_CONFIRMATIONS_JS, list(CONFIRMATION_BUTTON_LABELS))
            await self._sleep(CONFIRMATION_PAUSE)

            await self._capture(page, attempt, request)
        except NavigationError as exc:
            logger.error("%s", exc)
            attempt.fail(str(exc))
        except Exception as exc:
            logger.error("Capture of %s failed: %s", attempt.timeframe.label, exc)
            attempt.fail(f"Unexpected capture error: {exc}")
        finally:
            try:
                await page.close()
            except Exception as exc:
                logger.warning("Error closing page for %s: %s", attempt.timeframe.label, exc)

    async def _load(self, page: Page, attempt: TimeframeAttempt) -> None:
        tf = attempt.timeframe
        url = self._url_builder(self.config.symbol, tf.value)
        logger.info("Loading %s chart...", tf.label)
        try:
            await page.goto(url, wait_until="load")
        except Exception as exc:
            raise NavigationError(f"Navigation to {tf.label} chart failed: {exc}") from exc
        attempt.status = AttemptStatus.LOADED

        try:
            await page.wait_for_selector(RENDER_HINT_SELECTOR, timeout=self.config.render_timeout * 1000)
        except PlaywrightTimeoutError:
            logger.warning("%s not found for %s, capturing anyway", RENDER_HINT_SELECTOR, tf.label)
            attempt.degraded = True
            attempt.status = AttemptStatus.DEGRADED
        else:
            attempt.status = AttemptStatus.READY

    async def _evaluate_quietly(self, page: Page, script: str, arg: Any = None) -> Any:
        """Best-effort page script; failures are logged, never raised."""
        try:
            return await page.evaluate(script, arg)
        except Exception as exc:
            logger.debug("Page script failed: %s", exc)
            return None

    async def _inject_studies(self, page: Page) -> Dict[str, StudyResult]:
        studies = list(self.config.studies)
        if not studies:
            return {}

        try:
            outcome = await page.evaluate(INJECT_STUDIES_JS, [s.to_page_payload() for s in studies])
        except Exception as exc:
            outcome = {"ok": False, "error": str(exc)}

        if not isinstance(outcome, dict) or not outcome.get("ok"):
            reason = (outcome.get("error") if isinstance(outcome, dict) else None) or "unknown"
            logger.warning("Study injection failed: %s", reason)
            return {s.id: StudyResult(applied=False, error=reason) for s in studies}

        reported = {r.get("id"): r for r in outcome.get("results") or [] if isinstance(r, dict)}
        results: Dict[str, StudyResult] = {}
        for study in studies:
            entry = reported.get(study.id)
            if entry is None:
                results[study.id] = StudyResult(applied=False, error="No result reported")
            elif entry.get("ok"):
                results[study.id] = StudyResult(applied=True)
                logger.info("Added: %s", study.id)
            else:
                error = str(entry.get("error") or "unknown")
                results[study.id] = StudyResult(applied=False, error=error)
                logger.warning("%s failed - %s", study.id, error)
        return results

    async def _capture(self, page: Page, attempt: TimeframeAttempt, request: CaptureRequest) -> None:
        tf = attempt.timeframe
        kwargs = request.render.screenshot_kwargs()

        if request.output_mode is OutputMode.BUFFER:
            try:
                buffer = await page.screenshot(**kwargs)
            except Exception as exc:
                logger.error("Screenshot of %s failed: %s", tf.label, exc)
                attempt.fail(f"Screenshot failed: {exc}")
                return
            attempt.mark_captured(buffer=buffer)
            logger.info("Captured: %s", tf.label)
            return

        path = self.artifact_store.new_path(self.config.symbol, tf.code, request.render.image_format)
        retries = self.config.max_retries
        for n in range(retries + 1):
            try:
                await page.screenshot(path=str(path), **kwargs)
            except Exception as exc:
                if n == retries:
                    logger.error("Screenshot of %s failed after %d retries: %s", tf.label, retries, exc)
                    attempt.fail(f"Screenshot failed: {exc}")
                    return
                logger.warning("Retry %d/%d for %s...", n + 1, retries, path.name)
                await self._sleep(self.config.retry_delay)
            else:
                attempt.mark_captured(path=path)
                logger.info("Saved: %s", path.name)
                return
