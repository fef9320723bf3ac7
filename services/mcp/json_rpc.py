"""
JSON-RPC 2.0 message helpers shared by every MCP transport.

Error codes come from `mcp.types`; the two transport-level codes below are the
ones HTTP clients use to tell "start a new session" apart from a plain bad
request.
"""

from __future__ import annotations

from typing import Any

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR

BAD_REQUEST = -32000
SESSION_NOT_FOUND = -32001

__all__ = [
    "BAD_REQUEST",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "JsonRpcError",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SESSION_NOT_FOUND",
    "error_response",
    "is_initialize_request",
    "is_notification",
    "is_request",
    "is_response",
    "success_response",
]


class JsonRpcError(Exception):
    """Structured JSON-RPC failure raised by method handlers."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def success_response(request_id: str | int, result: Any) -> dict[str, Any]:
    """Create a JSON-RPC success response."""
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(
    request_id: str | int | None,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    """Create a JSON-RPC error response."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def is_request(msg: Any) -> bool:
    """A call expecting a response: has a method and a string/int id."""
    return (
        isinstance(msg, dict)
        and msg.get("jsonrpc") == "2.0"
        and isinstance(msg.get("method"), str)
        and "id" in msg
        and isinstance(msg["id"], (str, int))
        and not isinstance(msg["id"], bool)
    )


def is_notification(msg: Any) -> bool:
    return isinstance(msg, dict) and msg.get("jsonrpc") == "2.0" and isinstance(msg.get("method"), str) and "id" not in msg


def is_response(msg: Any) -> bool:
    return isinstance(msg, dict) and "method" not in msg and ("result" in msg or "error" in msg)


def is_initialize_request(body: Any) -> bool:
    """True for an `initialize` request, alone or as a single-element batch."""
    if isinstance(body, list):
        return len(body) == 1 and is_initialize_request(body[0])
    return is_request(body) and body["method"] == "initialize"
