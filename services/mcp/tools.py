"""MCP tools exposed by the screener: chart capture and configuration."""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from mcp.types import CallToolResult, ImageContent, TextContent, Tool
from pydantic import BaseModel, Field

from models.capture_models import CaptureRequest, OutputMode, RenderOptions, TimeframeAttempt
from models.chart_config import ChartConfig, Viewport
from services.artifact_store import ArtifactStore
from services.capture.pipeline import CapturePipeline

logger = logging.getLogger(__name__)

MCP_VIEWPORT = Viewport(1280, 800)
URL_MODE_JPEG_QUALITY = 75


class ScreenerTool(ABC):
    """
    Base class for MCP tools.

    Subclasses set `name`, `description` and `params_model` (a pydantic model
    validating the call arguments) and implement `execute`.
    """

    name: str = ""
    description: str = ""
    params_model: type[BaseModel] = BaseModel

    @abstractmethod
    async def execute(self, params: BaseModel) -> CallToolResult:
        ...

    def definition(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.params_model.model_json_schema())


def _text(text: str) -> TextContent:
    return TextContent(type="text", text=text)


def _warnings(attempt: TimeframeAttempt) -> List[str]:
    notes = []
    if attempt.degraded:
        notes.append("chart render not confirmed")
    failed = attempt.failed_studies()
    if failed:
        notes.append("studies not applied: " + ", ".join(failed))
    return notes


class CaptureChartsParams(BaseModel):
    timeframes: Optional[List[str]] = Field(
        default=None,
        description="Timeframe codes to capture (e.g. 5M, 1H). Omit for all.",
    )


class GetConfigParams(BaseModel):
    pass


class CaptureChartsTool(ScreenerTool):
    """Capture multi-timeframe chart screenshots.

    Inline mode returns base64 PNG image blocks. URL mode (for clients that
    only render markdown) saves JPEG files through the artifact store and
    returns markdown image links instead.
    """

    name = "capture_charts"
    params_model = CaptureChartsParams

    def __init__(
        self,
        pipeline: CapturePipeline,
        config: ChartConfig,
        artifact_store: Optional[ArtifactStore] = None,
        use_urls: bool = False,
    ) -> None:
        self.pipeline = pipeline
        self.config = config
        self.artifact_store = artifact_store
        self.use_urls = use_urls and artifact_store is not None
        self.description = (
            f"Capture {config.symbol} multi-timeframe chart screenshots from TradingView with SMA/EMA indicators. "
            f"Available timeframes: {', '.join(config.timeframe_codes())}. "
            "Returned image URLs MUST be displayed inline using markdown: ![label](image_url)"
        )

    async def execute(self, params: CaptureChartsParams) -> CallToolResult:
        logger.info("capture_charts called, timeframes=%s", params.timeframes or "all")
        render = (
            RenderOptions(viewport=MCP_VIEWPORT, image_format="jpeg", quality=URL_MODE_JPEG_QUALITY)
            if self.use_urls
            else RenderOptions(viewport=MCP_VIEWPORT)
        )
        attempts = await self.pipeline.run(
            CaptureRequest(timeframes=params.timeframes, output_mode=OutputMode.BUFFER, render=render)
        )

        if not attempts:
            return CallToolResult(
                content=[
                    _text(
                        "No charts captured. Check that the requested timeframes are valid. Available: "
                        + ", ".join(self.config.timeframe_codes())
                    )
                ]
            )

        captured = [a for a in attempts if a.captured]
        failed = [a for a in attempts if not a.captured]
        content: list[TextContent | ImageContent] = []

        if captured:
            symbol = self.config.symbol
            content.append(
                _text(
                    f"Captured {len(captured)} {symbol} chart(s): {', '.join(a.timeframe.label for a in captured)}\n"
                    f"Studies: {', '.join(s.describe() for s in self.config.studies)}"
                )
            )
            if self.use_urls:
                content.extend(await self._as_links(captured))
            else:
                for attempt in captured:
                    content.append(
                        ImageContent(
                            type="image",
                            data=base64.b64encode(attempt.buffer).decode("ascii"),
                            mimeType="image/png",
                        )
                    )
                    content.append(_text(f"^ {symbol} {attempt.timeframe.label} ({attempt.timeframe.code})"))

        warnings = []
        for attempt in captured:
            notes = _warnings(attempt)
            if notes:
                warnings.append(f"{attempt.timeframe.label} ({attempt.timeframe.code}): {', '.join(notes)}")
        if warnings:
            content.append(_text("Warnings: " + "; ".join(warnings)))

        if failed:
            content.append(
                _text(
                    "Failed: "
                    + "; ".join(f"{a.timeframe.label} ({a.timeframe.code}): {a.error}" for a in failed)
                )
            )

        return CallToolResult(content=content, isError=not captured)

    async def _as_links(self, captured: List[TimeframeAttempt]) -> List[TextContent]:
        links = []
        for attempt in captured:
            path = await self.artifact_store.save(attempt.buffer, self.config.symbol, attempt.timeframe.code)
            links.append(f"![{self.config.symbol} {attempt.timeframe.label}]({self.artifact_store.public_url(path)})")
            logger.info("%s: %dKB -> %s", attempt.timeframe.label, round(len(attempt.buffer) / 1024), path.name)
        return [
            _text("\n\n".join(links)),
            _text(
                "IMPORTANT: Display EVERY image above inline using the markdown image syntax. "
                "Analyze each chart after showing it."
            ),
        ]


class GetConfigTool(ScreenerTool):
    name = "get_config"
    description = "Get the current screener configuration (symbol, timeframes, studies)"
    params_model = GetConfigParams

    def __init__(self, config: ChartConfig) -> None:
        self.config = config

    async def execute(self, params: GetConfigParams) -> CallToolResult:
        logger.info("get_config called")
        return CallToolResult(content=[_text(json.dumps(self.config.to_dict(), indent=2))])
