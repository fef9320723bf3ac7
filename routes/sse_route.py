"""Legacy MCP event-stream endpoints: /sse and /messages."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import Response

from controllers.mcp_controller import TransportRouter, rpc_error
from services.mcp.json_rpc import INTERNAL_ERROR

router = APIRouter()

logger = logging.getLogger(__name__)


def _transport_router(request: Request) -> TransportRouter:
	return request.app.state.transport_router


@router.get("/sse")
async def open_sse(request: Request) -> Response:
	"""Open an event stream; the first event names the message endpoint."""
	return await _transport_router(request).open_event_stream()


@router.post("/messages")
async def post_sse_message(request: Request, sessionId: Optional[str] = Query(default=None)) -> Response:
	"""Accept a message for an event-stream session; the reply goes out on the stream."""
	try:
		return await _transport_router(request).handle_event_stream_post(sessionId, await request.body())
	except Exception as exc:
		logger.exception("POST /messages failed")
		return rpc_error(500, INTERNAL_ERROR, str(exc))
