from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from models.capture_models import AttemptStatus, CaptureRequest, OutputMode, RenderOptions
from models.chart_config import Viewport
from services.artifact_store import ArtifactStore
from services.capture.browser import BrowserLaunchError
from services.capture.pipeline import CapturePipeline


def _pipeline(chart_config, browser, fake_sleep, url_builder, store=None) -> CapturePipeline:
    return CapturePipeline(
        chart_config,
        launcher=browser.launcher(),
        artifact_store=store,
        url_builder=url_builder,
        sleep=fake_sleep,
    )


@pytest.mark.asyncio
async def test_requested_order_and_labels_preserved(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser()
    pipeline = _pipeline(chart_config, browser, fake_sleep, url_builder)

    attempts = await pipeline.run(CaptureRequest(timeframes=["5M", "1H"]))

    assert [a.timeframe.label for a in attempts] == ["5 Min", "1H"]
    assert browser.visited == ["5", "60"]
    assert all(a.status is AttemptStatus.CAPTURED for a in attempts)
    assert all(a.buffer and a.path is None for a in attempts)


@pytest.mark.asyncio
async def test_reverse_order_is_kept(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser()
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["4h", "15"])
    )
    assert [a.timeframe.code for a in attempts] == ["4H", "15M"]


@pytest.mark.asyncio
async def test_unknown_codes_dropped_and_empty_result(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser()
    pipeline = _pipeline(chart_config, browser, fake_sleep, url_builder)

    partial = await pipeline.run(CaptureRequest(timeframes=["2D", "30m"]))
    assert [a.timeframe.code for a in partial] == ["30M"]

    empty = await pipeline.run(CaptureRequest(timeframes=["2D", "1W"]))
    assert empty == []


@pytest.mark.asyncio
async def test_default_selects_all_configured(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser()
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(CaptureRequest())
    assert [a.timeframe.code for a in attempts] == ["5M", "15M", "30M", "1H", "4H"]


@pytest.mark.asyncio
async def test_browser_resources_released(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser()
    await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M", "15M"], render=RenderOptions(viewport=Viewport(1280, 800)))
    )

    assert browser.closed
    assert len(browser.contexts) == 1
    context = browser.contexts[0]
    assert context.closed
    assert context.options["viewport"] == {"width": 1280, "height": 800}
    assert context.options["locale"] == "it-IT"
    assert context.options["timezone_id"] == "Europe/Rome"
    assert all(page.closed for page in browser.pages)
    assert all("dialog" in page.handlers for page in browser.pages)


@pytest.mark.asyncio
async def test_dialog_handler_dismisses(chart_config, make_browser, fake_sleep, url_builder, fake_dialog) -> None:
    browser = make_browser()
    await _pipeline(chart_config, browser, fake_sleep, url_builder).run(CaptureRequest(timeframes=["5M"]))

    await browser.pages[0].handlers["dialog"](fake_dialog)
    assert fake_dialog.dismissed


@pytest.mark.asyncio
async def test_missing_canvas_degrades_but_captures(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    browser = make_browser({"60": behaviour(canvas_missing=True)})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M", "1H"])
    )

    assert not attempts[0].degraded
    assert attempts[1].degraded
    assert attempts[1].status is AttemptStatus.CAPTURED


@pytest.mark.asyncio
async def test_navigation_failure_fails_only_that_timeframe(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    browser = make_browser({"15": behaviour(goto_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M", "15M", "30M", "1H", "4H"])
    )

    assert [a.status for a in attempts].count(AttemptStatus.CAPTURED) == 4
    failed = attempts[1]
    assert failed.status is AttemptStatus.FAILED
    assert failed.artifact is None
    assert "ERR_NAME_NOT_RESOLVED" in failed.error
    assert all(page.closed for page in browser.pages)


@pytest.mark.asyncio
async def test_every_attempt_is_captured_xor_failed(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    browser = make_browser(
        {
            "5": behaviour(goto_error=RuntimeError("timeout")),
            "30": behaviour(screenshot_failures=1),
            "240": behaviour(canvas_missing=True, dismiss_error=True),
        }
    )
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(CaptureRequest())

    assert len(attempts) == 5
    for attempt in attempts:
        assert attempt.status in (AttemptStatus.CAPTURED, AttemptStatus.FAILED)
        assert (attempt.artifact is not None) == (attempt.status is AttemptStatus.CAPTURED)


@pytest.mark.asyncio
async def test_study_failure_is_recorded_not_fatal(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    outcome = {
        "ok": True,
        "results": [
            {"id": "MASimple@tv-basicstudies", "ok": False, "error": "TypeError: bad input"},
            {"id": "MAExp@tv-basicstudies", "ok": True},
        ],
    }
    browser = make_browser({"5": behaviour(study_outcome=outcome)})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M", "15M"])
    )

    assert all(a.captured for a in attempts)
    first = attempts[0]
    assert first.studies["MASimple@tv-basicstudies"].applied is False
    assert "bad input" in first.studies["MASimple@tv-basicstudies"].error
    assert first.studies["MAExp@tv-basicstudies"].applied is True
    assert first.failed_studies() == ["MASimple@tv-basicstudies"]
    assert attempts[1].failed_studies() == []


@pytest.mark.asyncio
async def test_missing_chart_widget_marks_all_studies_failed(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    browser = make_browser({"5": behaviour(study_outcome={"ok": False, "error": "no chartWidget"})})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(CaptureRequest(timeframes=["5M"]))

    assert attempts[0].captured
    assert {r.error for r in attempts[0].studies.values()} == {"no chartWidget"}


@pytest.mark.asyncio
async def test_study_evaluate_exception_is_recorded(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    browser = make_browser({"5": behaviour(study_error=RuntimeError("Execution context was destroyed"))})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(CaptureRequest(timeframes=["5M"]))

    assert attempts[0].captured
    assert attempts[0].status is AttemptStatus.CAPTURED
    assert all(not r.applied for r in attempts[0].studies.values())


@pytest.mark.asyncio
async def test_waits_follow_configuration(chart_config, make_browser, fake_sleep, sleeps, url_builder) -> None:
    browser = make_browser()
    await _pipeline(chart_config, browser, fake_sleep, url_builder).run(CaptureRequest(timeframes=["5M"]))
    assert sleeps == [chart_config.wait_time, chart_config.study_wait_time, 0.3]


@pytest.mark.asyncio
async def test_persist_mode_retries_then_succeeds(
    chart_config, make_browser, behaviour, fake_sleep, sleeps, url_builder, tmp_path: Path
) -> None:
    store = ArtifactStore(tmp_path / "shots")
    browser = make_browser({"60": behaviour(screenshot_failures=chart_config.max_retries)})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder, store).run(
        CaptureRequest(timeframes=["1H"], output_mode=OutputMode.PERSIST)
    )

    attempt = attempts[0]
    assert attempt.status is AttemptStatus.CAPTURED
    assert attempt.path is not None and attempt.path.exists()
    assert attempt.path.parent == tmp_path / "shots"
    assert attempt.path.name.startswith("XAUUSD_1H_")
    assert len(browser.pages[0].screenshot_calls) == chart_config.max_retries + 1
    assert sleeps[3:] == [chart_config.retry_delay] * chart_config.max_retries


@pytest.mark.asyncio
async def test_persist_mode_gives_up_after_max_retries(
    chart_config, make_browser, behaviour, fake_sleep, url_builder, tmp_path: Path
) -> None:
    store = ArtifactStore(tmp_path)
    browser = make_browser({"60": behaviour(screenshot_failures=99)})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder, store).run(
        CaptureRequest(timeframes=["1H", "4H"], output_mode=OutputMode.PERSIST)
    )

    assert attempts[0].status is AttemptStatus.FAILED
    assert "Screenshot failed" in attempts[0].error
    assert len(browser.pages[0].screenshot_calls) == chart_config.max_retries + 1
    assert attempts[1].status is AttemptStatus.CAPTURED


@pytest.mark.asyncio
async def test_buffer_mode_makes_a_single_attempt(
    chart_config, make_browser, behaviour, fake_sleep, url_builder
) -> None:
    browser = make_browser({"5": behaviour(screenshot_failures=1)})
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M"], output_mode=OutputMode.BUFFER)
    )

    assert attempts[0].status is AttemptStatus.FAILED
    assert len(browser.pages[0].screenshot_calls) == 1


@pytest.mark.asyncio
async def test_jpeg_render_options_reach_screenshot(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser()
    render = RenderOptions(image_format="jpeg", quality=75)
    await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M"], render=render)
    )
    assert browser.pages[0].screenshot_calls == [{"path": None, "type": "jpeg", "quality": 75}]


@pytest.mark.asyncio
async def test_launch_failure_fails_every_attempt(chart_config, fake_sleep, url_builder) -> None:
    @asynccontextmanager
    async def broken_launcher():
        raise BrowserLaunchError("Failed to launch Chromium: missing executable")
        yield  # pragma: no cover

    pipeline = CapturePipeline(chart_config, launcher=broken_launcher, url_builder=url_builder, sleep=fake_sleep)
    attempts = await pipeline.run(CaptureRequest(timeframes=["5M", "1H"]))

    assert len(attempts) == 2
    assert all(a.status is AttemptStatus.FAILED for a in attempts)
    assert all("missing executable" in a.error for a in attempts)


@pytest.mark.asyncio
async def test_browser_crash_keeps_earlier_artifacts(chart_config, make_browser, fake_sleep, url_builder) -> None:
    browser = make_browser(crash_after=2)
    attempts = await _pipeline(chart_config, browser, fake_sleep, url_builder).run(
        CaptureRequest(timeframes=["5M", "15M", "30M", "1H"])
    )

    assert [a.status for a in attempts] == [
        AttemptStatus.CAPTURED,
        AttemptStatus.CAPTURED,
        AttemptStatus.FAILED,
        AttemptStatus.FAILED,
    ]
    assert attempts[0].buffer and attempts[1].buffer
    assert browser.closed
    assert browser.contexts[0].closed


@pytest.mark.asyncio
async def test_persist_mode_requires_store(chart_config, make_browser, fake_sleep, url_builder) -> None:
    pipeline = _pipeline(chart_config, make_browser(), fake_sleep, url_builder)
    with pytest.raises(ValueError):
        await pipeline.run(CaptureRequest(timeframes=["5M"], output_mode=OutputMode.PERSIST))
