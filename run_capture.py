"""Capture every configured chart timeframe once and save the screenshots.

Screenshots are written under `SCREENSHOTS_DIR` (default `./screenshots`)
with retries on write failures. Exits with status 1 when nothing was
captured.

Run: `python run_capture.py` or `python run_capture.py --timeframes 5M 1H`.
"""
import argparse
import asyncio
import logging
import sys
import time
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv

from models.capture_models import CaptureRequest, OutputMode, TimeframeAttempt
from models.chart_config import DEFAULT_CHART_CONFIG
from services.artifact_store import ArtifactStore
from services.capture.browser import chromium_launcher
from services.capture.pipeline import CapturePipeline
from utils.settings import BASE_DIR, Settings


def _print_report(attempts: List[TimeframeAttempt], elapsed: float) -> None:
    """Print saved paths (relative to the project root when possible) and failures."""
    captured = [a for a in attempts if a.captured]
    print(f"\nScreenshots captured ({len(captured)}):")
    for attempt in captured:
        try:
            shown = attempt.path.relative_to(BASE_DIR)
        except ValueError:
            shown = attempt.path
        print(f"  {shown}")
    for attempt in attempts:
        if not attempt.captured:
            print(f"  FAILED {attempt.timeframe.label}: {attempt.error}")
    print(f"\nDone in {elapsed:.1f}s")


async def main(timeframes: Optional[List[str]] = None) -> int:
    """Run one persist-mode capture and return the process exit code."""
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(stream=sys.stderr, level=getattr(logging, settings.log_level, logging.INFO))

    store = ArtifactStore(settings.screenshots_dir, base_url=settings.base_url)
    pipeline = CapturePipeline(
        DEFAULT_CHART_CONFIG,
        launcher=chromium_launcher(headless=settings.browser_headless),
        artifact_store=store,
    )

    print("========================================")
    print(f"  {DEFAULT_CHART_CONFIG.symbol} Multi-Timeframe Screener")
    print(f"  {datetime.now():%Y-%m-%d %H:%M:%S}")
    print("========================================")

    start = time.monotonic()
    attempts = await pipeline.run(CaptureRequest(timeframes=timeframes, output_mode=OutputMode.PERSIST))
    _print_report(attempts, time.monotonic() - start)
    return 0 if any(a.captured for a in attempts) else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Capture chart screenshots to disk.")
    parser.add_argument("--timeframes", nargs="*", help="Timeframe codes to capture (default: all)")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.timeframes)))
