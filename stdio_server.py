"""Serve the screener MCP tools over stdio.

Desktop MCP clients launch this script and exchange newline-delimited
JSON-RPC messages on stdin/stdout. Logging goes to stderr so stdout carries
protocol traffic only. Images are returned inline (base64).

Run: `python stdio_server.py`
"""
import asyncio
import json
import logging
import sys
from typing import AsyncIterable, Callable

from dotenv import load_dotenv

from models.chart_config import DEFAULT_CHART_CONFIG
from services.artifact_store import ArtifactStore
from services.capture.browser import chromium_launcher
from services.capture.pipeline import CapturePipeline
from services.mcp.json_rpc import PARSE_ERROR, error_response
from services.mcp.server import ScreenerServer, create_screener_server
from utils.settings import Settings

logger = logging.getLogger("stdio_server")


async def serve_lines(server: ScreenerServer, lines: AsyncIterable[bytes], write: Callable[[str], None]) -> None:
    """Dispatch each non-empty input line and write one output line per response.

    Args:
        server: The MCP server handling decoded messages.
        lines: Raw input lines (stdin in production).
        write: Sink for encoded responses, newline included.
    """
    async for line in lines:
        if not line.strip():
            continue
        try:
            message = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            response = error_response(None, PARSE_ERROR, "Invalid JSON")
        else:
            response = await server.handle_message(message)
        if response is not None:
            write(json.dumps(response) + "\n")


async def _stdin_lines() -> AsyncIterable[bytes]:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    while True:
        line = await reader.readline()
        if not line:
            break  # stdin closed
        yield line


def _write_stdout(payload: str) -> None:
    sys.stdout.write(payload)
    sys.stdout.flush()


async def main() -> None:
    """Build the capture pipeline and serve it until stdin closes."""
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(stream=sys.stderr, level=getattr(logging, settings.log_level, logging.INFO))

    store = ArtifactStore(settings.screenshots_dir, base_url=settings.base_url)
    pipeline = CapturePipeline(
        DEFAULT_CHART_CONFIG,
        launcher=chromium_launcher(headless=settings.browser_headless),
        artifact_store=store,
    )
    server = create_screener_server(pipeline, DEFAULT_CHART_CONFIG)
    logger.info("%s MCP server running on stdio", server.name)
    await serve_lines(server, _stdin_lines(), _write_stdout)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
