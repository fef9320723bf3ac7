"""Chart configuration: symbol, timeframes, studies and render defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class Timeframe:
    """One chart resolution.

    Attributes:
        value: Interval value understood by the charting widget (e.g. "60").
        label: Human readable label (e.g. "1H").
        code: Short code used in requests and file names (e.g. "1H").
    """

    value: str
    label: str
    code: str


@dataclass(frozen=True)
class Study:
    """An indicator injected into the rendered chart."""

    id: str
    plot_name: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    styles: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        length = self.inputs.get("length")
        return f"{self.id} (length={length})" if length is not None else self.id

    def to_page_payload(self) -> Dict[str, Any]:
        """Shape consumed by the in-page injection script."""
        return {"id": self.id, "plotName": self.plot_name, "inputs": dict(self.inputs), "styles": dict(self.styles)}


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int

    def as_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class ChartConfig:
    """Static chart configuration consumed by the capture pipeline.

    Wait durations are in seconds.
    """

    symbol: str
    timeframes: Sequence[Timeframe]
    studies: Sequence[Study]
    viewport: Viewport = Viewport(1920, 1200)
    wait_time: float = 3.0
    study_wait_time: float = 2.0
    max_retries: int = 2
    retry_delay: float = 2.0
    render_timeout: float = 15.0
    locale: str = "it-IT"
    timezone_id: str = "Europe/Rome"

    def timeframe_codes(self) -> List[str]:
        return [tf.code for tf in self.timeframes]

    def select_timeframes(self, requested: Optional[Sequence[str]]) -> List[Timeframe]:
        """Resolve requested codes against the configured timeframes.

        Codes match a timeframe's `code` or raw `value`, case-insensitively.
        Unknown codes are dropped, duplicates collapse and the caller's order
        is kept. `None` selects every configured timeframe in config order.
        """
        if requested is None:
            return list(self.timeframes)

        selected: List[Timeframe] = []
        for raw in requested:
            token = str(raw).strip().upper()
            if not token:
                continue
            match = next(
                (tf for tf in self.timeframes if token in (tf.code.upper(), tf.value.upper())),
                None,
            )
            if match is not None and match not in selected:
                selected.append(match)
        return selected

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view returned by the config endpoints."""
        return {
            "symbol": self.symbol,
            "timeframes": [{"value": tf.value, "label": tf.label, "filename": tf.code} for tf in self.timeframes],
            "studies": [
                {"id": s.id, "plotName": s.plot_name, "inputs": dict(s.inputs), "styles": dict(s.styles)}
                for s in self.studies
            ],
            "viewport": self.viewport.as_dict(),
            "waitTime": int(self.wait_time * 1000),
            "studyWaitTime": int(self.study_wait_time * 1000),
            "maxRetries": self.max_retries,
        }


DEFAULT_CHART_CONFIG = ChartConfig(
    symbol="XAUUSD",
    timeframes=(
        Timeframe(value="5", label="5 Min", code="5M"),
        Timeframe(value="15", label="15 Min", code="15M"),
        Timeframe(value="30", label="30 Min", code="30M"),
        Timeframe(value="60", label="1H", code="1H"),
        Timeframe(value="240", label="4H", code="4H"),
    ),
    studies=(
        Study(
            id="MASimple@tv-basicstudies",
            plot_name="MovAvgSimple",
            inputs={"length": 265},
            styles={"color": "#00bcd4", "linewidth": 3},
        ),
        Study(
            id="MAExp@tv-basicstudies",
            plot_name="MovAvgExp",
            inputs={"length": 75},
            styles={"color": "#2962ff", "linewidth": 3},
        ),
    ),
)
