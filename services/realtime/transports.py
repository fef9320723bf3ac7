"""Transport handles carrying MCP messages for one session."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, List, Optional, Set
from uuid import uuid4

from models.session_models import TransportKind
from services.mcp.server import ScreenerServer

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0

CloseListener = Callable[[Optional[str]], None]


class TransportClosedError(RuntimeError):
	"""Raised when a message is routed to a transport that was already closed."""


class StreamConflictError(RuntimeError):
	"""Raised when a second event stream is opened on the same session."""


def format_sse(data: str, event: Optional[str] = None) -> str:
	"""Encode one server-sent event frame."""
	lines = [f"event: {event}"] if event else []
	lines.extend(f"data: {line}" for line in (data.splitlines() or [""]))
	return "\n".join(lines) + "\n\n"


async def _drain(queue: "asyncio.Queue[Optional[str]]", keepalive: float) -> AsyncIterator[str]:
	"""Yield queued frames until the None sentinel, with keepalive comments in between."""
	while True:
		try:
			item = await asyncio.wait_for(queue.get(), timeout=keepalive)
		except asyncio.TimeoutError:
			yield ": keepalive\n\n"
			continue
		if item is None:
			return
		yield item


class TransportHandle:
	"""Base transport: owns the session's server and notifies close listeners once."""

	kind: TransportKind

	def __init__(self, server: ScreenerServer, session_id: Optional[str] = None) -> None:
		self.server = server
		self.session_id = session_id
		self.closed = False
		self._close_listeners: List[CloseListener] = []

	def bind(self, session_id: str) -> None:
		if self.session_id is not None and self.session_id != session_id:
			raise ValueError(f"Transport already bound to session {self.session_id}")
		self.session_id = session_id

	def add_close_listener(self, listener: CloseListener) -> None:
		self._close_listeners.append(listener)

	def ensure_open(self) -> None:
		if self.closed:
			raise TransportClosedError(f"Transport for session {self.session_id} is closed")

	async def dispatch(self, message: Any) -> Optional[Any]:
		"""Forward a decoded JSON-RPC message to the session's server."""
		self.ensure_open()
		return await self.server.handle_message(message)

	async def close(self) -> None:
		"""Close the handle; idempotent. Listeners run even if shutdown fails."""
		if self.closed:
			return
		self.closed = True
		try:
			await self._shutdown()
		finally:
			for listener in list(self._close_listeners):
				try:
					listener(self.session_id)
				except Exception as exc:
					logger.error("Close listener failed for session %s: %s", self.session_id, exc)

	async def _shutdown(self) -> None:
		pass


class StreamableTransport(TransportHandle):
	"""Streamable HTTP transport: JSON responses on POST, optional GET event stream."""

	kind = TransportKind.STREAMABLE

	def __init__(self, server: ScreenerServer, session_id: Optional[str] = None, keepalive: float = KEEPALIVE_SECONDS) -> None:
		super().__init__(server, session_id)
		self.keepalive = keepalive
		self._stream: Optional[asyncio.Queue] = None

	async def handle_post(self, message: Any) -> Optional[Any]:
		return await self.dispatch(message)

	def open_stream(self) -> AsyncIterator[str]:
		"""Attach the single server-to-client stream for this session."""
		self.ensure_open()
		if self._stream is not None:
			raise StreamConflictError(f"Session {self.session_id} already has an open stream")
		queue: asyncio.Queue = asyncio.Queue()
		self._stream = queue
		return self._iterate(queue)

	async def _iterate(self, queue: asyncio.Queue) -> AsyncIterator[str]:
		try:
			async for frame in _drain(queue, self.keepalive):
				yield frame
		finally:
			if self._stream is queue:
				self._stream = None

	@property
	def has_stream(self) -> bool:
		return self._stream is not None

	async def _shutdown(self) -> None:
		if self._stream is not None:
			self._stream.put_nowait(None)


class EventStreamTransport(TransportHandle):
	"""Legacy SSE transport: one long-lived stream, messages posted separately.

	The session id is chosen here, at stream-open time. Posted messages are
	processed in the background and their responses are pushed onto the
	stream as `message` events.
	"""

	kind = TransportKind.EVENT_STREAM

	def __init__(self, server: ScreenerServer, endpoint: str = "/messages", keepalive: float = KEEPALIVE_SECONDS) -> None:
		super().__init__(server, session_id=uuid4().hex)
		self.endpoint = endpoint
		self.keepalive = keepalive
		self._queue: asyncio.Queue = asyncio.Queue()
		self._pending: Set[asyncio.Task] = set()

	@property
	def message_url(self) -> str:
		return f"{self.endpoint}?sessionId={self.session_id}"

	async def events(self) -> AsyncIterator[str]:
		"""Yield the endpoint event, then every response frame until closed.

		Leaving the iterator (client disconnect) closes the transport.
		"""
		self.ensure_open()
		try:
			yield format_sse(self.message_url, event="endpoint")
			async for frame in _drain(self._queue, self.keepalive):
				yield frame
		finally:
			await self.close()

	async def handle_post_message(self, message: Any) -> None:
		"""Accept a posted message; its response is delivered on the stream."""
		self.ensure_open()
		task = asyncio.create_task(self._process(message))
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _process(self, message: Any) -> None:
		try:
			response = await self.dispatch(message)
		except TransportClosedError:
			return
		except Exception as exc:
			logger.error("Session %s failed to process message: %s", self.session_id, exc)
			return
		if response is not None and not self.closed:
			self._queue.put_nowait(format_sse(json.dumps(response), event="message"))

	async def _shutdown(self) -> None:
		self._queue.put_nowait(None)
