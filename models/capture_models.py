"""Capture request and per-timeframe attempt models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from models.chart_config import Timeframe, Viewport


class OutputMode(str, Enum):
	PERSIST = "persist"
	BUFFER = "buffer"


class AttemptStatus(str, Enum):
	PENDING = "pending"
	LOADED = "loaded"
	DEGRADED = "degraded"
	READY = "ready"
	STUDIES_APPLIED = "studies-applied"
	CAPTURED = "captured"
	FAILED = "failed"


TERMINAL_STATUSES = frozenset({AttemptStatus.CAPTURED, AttemptStatus.FAILED})


@dataclass(frozen=True)
class RenderOptions:
	"""Viewport and image encoding for one capture run.

	`viewport=None` falls back to the chart configuration's viewport.
	`quality` only applies to JPEG output.
	"""

	viewport: Optional[Viewport] = None
	image_format: str = "png"
	quality: Optional[int] = None

	def screenshot_kwargs(self) -> Dict[str, object]:
		kwargs: Dict[str, object] = {"type": self.image_format}
		if self.image_format == "jpeg" and self.quality is not None:
			kwargs["quality"] = self.quality
		return kwargs


@dataclass(frozen=True)
class CaptureRequest:
	"""One invocation of the capture pipeline; never persisted."""

	timeframes: Optional[Sequence[str]] = None
	output_mode: OutputMode = OutputMode.BUFFER
	render: RenderOptions = field(default_factory=RenderOptions)


@dataclass
class StudyResult:
	applied: bool
	error: Optional[str] = None


@dataclass
class TimeframeAttempt:
	"""Pipeline state for a single timeframe.

	An artifact (`buffer` or `path`) is present iff the status is CAPTURED.
	`degraded` records that the render hint never appeared; it survives the
	later status transitions.
	"""

	timeframe: Timeframe
	status: AttemptStatus = AttemptStatus.PENDING
	degraded: bool = False
	studies: Dict[str, StudyResult] = field(default_factory=dict)
	buffer: Optional[bytes] = None
	path: Optional[Path] = None
	error: Optional[str] = None

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES

	@property
	def captured(self) -> bool:
		return self.status is AttemptStatus.CAPTURED

	@property
	def artifact(self) -> Optional[bytes | Path]:
		return self.buffer if self.buffer is not None else self.path

	def mark_captured(self, *, buffer: Optional[bytes] = None, path: Optional[Path] = None) -> None:
		if buffer is None and path is None:
			raise ValueError("A captured attempt needs a buffer or a path.")
		self.buffer = buffer
		self.path = path
		self.error = None
		self.status = AttemptStatus.CAPTURED

	def fail(self, reason: str) -> None:
		self.buffer = None
		self.path = None
		self.error = reason
		self.status = AttemptStatus.FAILED

	def failed_studies(self) -> List[str]:
		return [study_id for study_id, result in self.studies.items() if not result.applied]
