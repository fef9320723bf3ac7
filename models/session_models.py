"""Session domain models for MCP transports."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
	from services.mcp.server import ScreenerServer
	from services.realtime.transports import TransportHandle


class TransportKind(str, Enum):
	STREAMABLE = "streamable"
	EVENT_STREAM = "event-stream"


@dataclass
class Session:
	"""Registry entry binding a session id to its transport and server."""

	session_id: str
	transport: "TransportHandle"
	server: "ScreenerServer"
	last_activity: float

	@property
	def transport_kind(self) -> TransportKind:
		return self.transport.kind

	def idle_for(self, now: float) -> float:
		return now - self.last_activity
