"""Streamable HTTP MCP endpoint: POST, GET and DELETE on /mcp."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import Response

from controllers.mcp_controller import TransportRouter, rpc_error
from services.mcp.json_rpc import INTERNAL_ERROR

router = APIRouter()

logger = logging.getLogger(__name__)


def _transport_router(request: Request) -> TransportRouter:
	return request.app.state.transport_router


@router.post("/mcp")
async def mcp_post(request: Request, mcp_session_id: Optional[str] = Header(default=None)) -> Response:
	"""Carry one JSON-RPC message (or batch); an initialize request opens a session."""
	try:
		return await _transport_router(request).handle_streamable_post(mcp_session_id, await request.body())
	except Exception as exc:
		logger.exception("POST /mcp failed")
		return rpc_error(500, INTERNAL_ERROR, str(exc))


@router.get("/mcp")
async def mcp_stream(request: Request, mcp_session_id: Optional[str] = Header(default=None)) -> Response:
	"""Open the server-to-client event stream of an established session."""
	try:
		return await _transport_router(request).handle_streamable_get(mcp_session_id)
	except Exception as exc:
		logger.exception("GET /mcp failed")
		return rpc_error(500, INTERNAL_ERROR, str(exc))


@router.delete("/mcp")
async def mcp_terminate(request: Request, mcp_session_id: Optional[str] = Header(default=None)) -> Response:
	"""Terminate a session explicitly."""
	try:
		return await _transport_router(request).handle_streamable_delete(mcp_session_id)
	except Exception as exc:
		logger.exception("DELETE /mcp failed")
		return rpc_error(500, INTERNAL_ERROR, str(exc))
