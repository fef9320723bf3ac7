from fastapi import Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, List, Optional
import logging

from models.capture_models import CaptureRequest, OutputMode, RenderOptions
from models.chart_config import ChartConfig, Viewport
from services.artifact_store import ArtifactStore
from services.capture.pipeline import CapturePipeline

logger = logging.getLogger(__name__)

REST_RENDER = RenderOptions(viewport=Viewport(1280, 800), image_format="jpeg", quality=75)

DISPLAY_INSTRUCTION = (
    "IMPORTANT: show EVERY image inline with markdown ![SYMBOL LABEL](image_url) and then analyze the chart. "
    "Do not show only the links."
)


async def capture_charts(request: Request, timeframes: Optional[List[str]] = None) -> Any:
    """Capture charts for the requested timeframes and return public image URLs.

    Screenshots are taken as JPEG buffers with a smaller viewport to keep the
    linked images light, then persisted through the artifact store.

    Args:
        request: FastAPI Request (used to access app.state for the pipeline and store).
        timeframes: Optional timeframe codes; None captures every configured timeframe.

    Returns:
        A dict with `symbol`, `studies`, `charts` (timeframe, label, image_url, degraded, failed_studies),
        `failures` (timeframe, label, error) and a display instruction, or a
        500 `JSONResponse` when timeframes were selected but none was captured.
    """
    pipeline: CapturePipeline = request.app.state.capture_pipeline
    store: ArtifactStore = request.app.state.artifact_store
    config: ChartConfig = request.app.state.chart_config

    logger.info("capture-charts called, timeframes=%s", timeframes or "all")
    attempts = await pipeline.run(
        CaptureRequest(timeframes=timeframes, output_mode=OutputMode.BUFFER, render=REST_RENDER)
    )

    charts: List[Dict[str, Any]] = []
    failures: List[Dict[str, Any]] = []
    for attempt in attempts:
        tf = attempt.timeframe
        if not attempt.captured:
            failures.append({"timeframe": tf.code, "label": tf.label, "error": attempt.error})
            continue
        try:
            path = await store.save(attempt.buffer, config.symbol, tf.code)
        except (OSError, ValueError) as exc:
            logger.error("Failed to persist %s screenshot: %s", tf.label, exc)
            failures.append({"timeframe": tf.code, "label": tf.label, "error": f"Failed to save screenshot: {exc}"})
            continue
        charts.append(
            {
                "timeframe": tf.code,
                "label": tf.label,
                "image_url": store.public_url(path),
                "degraded": attempt.degraded,
                "failed_studies": attempt.failed_studies(),
            }
        )
        logger.info("%s: %dKB", tf.label, round(len(attempt.buffer) / 1024))

    if attempts and not charts:
        detail = "; ".join(f"{f['label']}: {f['error']}" for f in failures)
        return JSONResponse(status_code=500, content={"error": f"No charts captured ({detail})", "failures": failures})

    return {
        "symbol": config.symbol,
        "studies": [s.describe() for s in config.studies],
        "charts": charts,
        "failures": failures,
        "_instruction": DISPLAY_INSTRUCTION,
    }


def get_config(request: Request) -> Dict[str, Any]:
    """Return the chart configuration as served by GET /config."""
    config: ChartConfig = request.app.state.chart_config
    return config.to_dict()
