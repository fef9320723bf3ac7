"""
MCP server instance: JSON-RPC dispatch for one client session.

Each session gets its own `ScreenerServer`, so per-client protocol state
(negotiated version, client info) never leaks between sessions. Transports
hand raw decoded JSON to `handle_message` and send back whatever it returns.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    CallToolResult,
    Implementation,
    InitializeResult,
    ListToolsResult,
    ServerCapabilities,
    TextContent,
    ToolsCapability,
)
from pydantic import ValidationError

from models.chart_config import ChartConfig
from services.artifact_store import ArtifactStore
from services.capture.pipeline import CapturePipeline
from services.mcp.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    JsonRpcError,
    error_response,
    is_notification,
    is_request,
    is_response,
    success_response,
)
from services.mcp.tools import CaptureChartsTool, GetConfigTool, ScreenerTool

logger = logging.getLogger(__name__)

SERVER_NAME = "xauusd-screener"
SERVER_VERSION = "1.0.0"
SUPPORTED_PROTOCOL_VERSIONS = (LATEST_PROTOCOL_VERSION, "2025-03-26", "2024-11-05")


def _dump(model: Any) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class ScreenerServer:
    """Dispatch MCP requests to the registered tools.

    Usage:
        server = ScreenerServer(tools=[GetConfigTool(config)])
        response = await server.handle_message({"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
    """

    def __init__(self, tools: Iterable[ScreenerTool], name: str = SERVER_NAME, version: str = SERVER_VERSION) -> None:
        self.name = name
        self.version = version
        self.tools: Dict[str, ScreenerTool] = {tool.name: tool for tool in tools}
        self.protocol_version: Optional[str] = None
        self.client_info: Optional[Dict[str, Any]] = None
        self._methods: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @property
    def initialized(self) -> bool:
        return self.protocol_version is not None

    async def handle_message(self, message: Any) -> Optional[Any]:
        """Handle one message or a batch; returns None when nothing is owed back."""
        if isinstance(message, list):
            if not message:
                return error_response(None, INVALID_REQUEST, "Invalid Request: empty batch")
            responses = []
            for item in message:
                response = await self._handle_single(item)
                if response is not None:
                    responses.append(response)
            return responses or None
        return await self._handle_single(message)

    async def _handle_single(self, message: Any) -> Optional[Dict[str, Any]]:
        if is_response(message):
            return None
        if is_notification(message):
            logger.debug("Notification received: %s", message["method"])
            return None
        if not is_request(message):
            request_id = message.get("id") if isinstance(message, dict) else None
            return error_response(request_id if isinstance(request_id, (str, int)) else None, INVALID_REQUEST, "Invalid Request")

        request_id = message["id"]
        handler = self._methods.get(message["method"])
        if handler is None:
            return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {message['method']}")

        params = message.get("params") or {}
        if not isinstance(params, dict):
            return error_response(request_id, INVALID_PARAMS, "Params must be an object")
        try:
            result = await handler(params)
        except JsonRpcError as exc:
            return error_response(request_id, exc.code, exc.message, exc.data)
        except Exception as exc:
            logger.exception("Unhandled error in %s", message["method"])
            return error_response(request_id, INTERNAL_ERROR, str(exc))
        return success_response(request_id, result)

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        self.protocol_version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        client_info = params.get("clientInfo")
        self.client_info = client_info if isinstance(client_info, dict) else None
        return _dump(
            InitializeResult(
                protocolVersion=self.protocol_version,
                capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
                serverInfo=Implementation(name=self.name, version=self.version),
            )
        )

    async def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return _dump(ListToolsResult(tools=[tool.definition() for tool in self.tools.values()]))

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        tool = self.tools.get(name) if isinstance(name, str) else None
        if tool is None:
            raise JsonRpcError(INVALID_PARAMS, f"Unknown tool: {name}")

        try:
            arguments = tool.params_model.model_validate(params.get("arguments") or {})
        except ValidationError as exc:
            raise JsonRpcError(INVALID_PARAMS, f"Invalid arguments for {name}", str(exc)) from exc

        try:
            result = await tool.execute(arguments)
        except Exception as exc:
            logger.error("%s error: %s", name, exc)
            result = CallToolResult(
                content=[TextContent(type="text", text=f"Error executing {name}: {exc}")],
                isError=True,
            )
        return _dump(result)


def create_screener_server(
    pipeline: CapturePipeline,
    config: ChartConfig,
    artifact_store: Optional[ArtifactStore] = None,
    use_urls: bool = False,
) -> ScreenerServer:
    """Build a server instance with the capture and config tools registered."""
    return ScreenerServer(
        tools=[
            CaptureChartsTool(pipeline, config, artifact_store=artifact_store, use_urls=use_urls),
            GetConfigTool(config),
        ]
    )
