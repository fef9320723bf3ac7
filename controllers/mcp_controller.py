"""Route inbound MCP traffic to the session that owns it."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional, Tuple

from fastapi.responses import JSONResponse, Response, StreamingResponse

from models.session_models import Session
from services.mcp.json_rpc import (
	BAD_REQUEST,
	INVALID_REQUEST,
	PARSE_ERROR,
	SESSION_NOT_FOUND,
	error_response,
	is_initialize_request,
)
from services.mcp.server import ScreenerServer
from services.realtime.session_registry import SessionRegistry
from services.realtime.transports import (
	KEEPALIVE_SECONDS,
	EventStreamTransport,
	StreamableTransport,
	StreamConflictError,
	TransportClosedError,
)

logger = logging.getLogger(__name__)

SESSION_HEADER = "mcp-session-id"
MESSAGES_ENDPOINT = "/messages"
_STREAM_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def rpc_error(status_code: int, code: int, message: str) -> JSONResponse:
	return JSONResponse(status_code=status_code, content=error_response(None, code, message))


def session_not_found() -> JSONResponse:
	"""Distinct from a bad request: the client should start a new session."""
	return rpc_error(404, SESSION_NOT_FOUND, "Session not found")


def _parse_json(raw: bytes) -> Tuple[bool, Any]:
	if not raw or not raw.strip():
		return True, None
	try:
		return True, json.loads(raw)
	except ValueError:
		return False, None


class TransportRouter:
	"""Dispatch streamable and event-stream requests through the session registry.

	Args:
		registry: Live sessions keyed by id.
		server_factory: Builds a fresh MCP server instance per new session.
		keepalive: Seconds between keepalive comments on idle event streams.
	"""

	def __init__(
		self,
		registry: SessionRegistry,
		server_factory: Callable[[], ScreenerServer],
		keepalive: float = KEEPALIVE_SECONDS,
	) -> None:
		self.registry = registry
		self.server_factory = server_factory
		self.keepalive = keepalive

	async def handle_streamable_post(self, session_id: Optional[str], raw: bytes) -> Response:
		ok, body = _parse_json(raw)
		if not ok:
			return rpc_error(400, PARSE_ERROR, "Parse error")

		session = self.registry.lookup(session_id)
		if session is not None and isinstance(session.transport, StreamableTransport):
			if is_initialize_request(body):
				logger.warning("Rejected re-initialize on session: %s", session.session_id)
				return rpc_error(400, INVALID_REQUEST, "Invalid Request: session already initialized")
			self.registry.touch(session.session_id)
			return await self._forward(session.transport, body)

		if is_initialize_request(body):
			return await self._initialize(body)

		if session_id:
			logger.warning("Rejected stale session: %s", session_id)
			return session_not_found()

		return rpc_error(400, BAD_REQUEST, "Bad Request: no valid session ID")

	async def handle_streamable_get(self, session_id: Optional[str]) -> Response:
		session, error = self._require_streamable(session_id)
		if error is not None:
			return error
		self.registry.touch(session.session_id)
		try:
			stream = session.transport.open_stream()
		except StreamConflictError:
			return rpc_error(409, BAD_REQUEST, "Conflict: only one stream is allowed per session")
		except TransportClosedError:
			return session_not_found()
		return StreamingResponse(
			stream,
			media_type="text/event-stream",
			headers={**_STREAM_HEADERS, SESSION_HEADER: session.session_id},
		)

	async def handle_streamable_delete(self, session_id: Optional[str]) -> Response:
		session, error = self._require_streamable(session_id)
		if error is not None:
			return error
		logger.info("Session terminated by client: %s", session.session_id)
		await self.registry.remove(session.session_id)
		return Response(status_code=200)

	async def open_event_stream(self) -> Response:
		server = self.server_factory()
		transport = EventStreamTransport(server, endpoint=MESSAGES_ENDPOINT, keepalive=self.keepalive)
		session_id = self.registry.create(transport, server)
		logger.info("New SSE connection: %s", session_id)
		return StreamingResponse(transport.events(), media_type="text/event-stream", headers=dict(_STREAM_HEADERS))

	async def handle_event_stream_post(self, session_id: Optional[str], raw: bytes) -> Response:
		if not session_id:
			return rpc_error(400, BAD_REQUEST, "Bad Request: missing sessionId")
		session = self.registry.lookup(session_id)
		if session is None or not isinstance(session.transport, EventStreamTransport):
			logger.warning("Rejected unknown SSE session: %s", session_id)
			return session_not_found()

		ok, body = _parse_json(raw)
		if not ok or body is None:
			return rpc_error(400, PARSE_ERROR, "Parse error")

		self.registry.touch(session_id)
		try:
			await session.transport.handle_post_message(body)
		except TransportClosedError:
			return session_not_found()
		return Response(content="Accepted", status_code=202)

	async def _initialize(self, body: Any) -> Response:
		server = self.server_factory()
		transport = StreamableTransport(server, keepalive=self.keepalive)
		self.registry.create(transport, server)
		return await self._forward(transport, body)

	async def _forward(self, transport: StreamableTransport, body: Any) -> Response:
		try:
			result = await transport.handle_post(body)
		except TransportClosedError:
			return session_not_found()
		headers = {SESSION_HEADER: transport.session_id}
		if result is None:
			return Response(status_code=202, headers=headers)
		return JSONResponse(content=result, headers=headers)

	def _require_streamable(self, session_id: Optional[str]) -> Tuple[Optional[Session], Optional[Response]]:
		if not session_id:
			return None, rpc_error(400, BAD_REQUEST, "Bad Request: missing session ID")
		session = self.registry.lookup(session_id)
		if session is None or not isinstance(session.transport, StreamableTransport):
			return None, session_not_found()
		return session, None
