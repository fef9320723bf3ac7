import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from controllers.mcp_controller import SESSION_HEADER, TransportRouter
from models.chart_config import DEFAULT_CHART_CONFIG, ChartConfig
from routes.artifact_route import router as artifact_router
from routes.capture_route import router as capture_router
from routes.mcp_route import router as mcp_router
from routes.sse_route import router as sse_router
from services.artifact_store import ArtifactStore
from services.capture.browser import chromium_launcher
from services.capture.pipeline import CapturePipeline
from services.mcp.server import SERVER_NAME, SERVER_VERSION, create_screener_server
from services.realtime.session_registry import SessionRegistry
from utils.artifact_sweeper import ArtifactSweeper
from utils.settings import Settings

load_dotenv()  # Load environment variables from .env file if present

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager that:
      - creates the screenshots directory,
      - starts the screenshot sweeper and the idle-session reaper,
    and on shutdown cancels both tasks and closes every live session.
    """
    settings: Settings = app.state.settings
    store: ArtifactStore = app.state.artifact_store
    registry: SessionRegistry = app.state.session_registry

    configure_logging(settings.log_level)
    store.ensure_directory()
    sweeper = ArtifactSweeper(store.directory, ttl_seconds=settings.screenshots_ttl_seconds)
    tasks = [
        asyncio.create_task(sweeper.run_periodic(settings.screenshots_sweep_interval)),
        asyncio.create_task(registry.run_periodic_reaper(settings.session_sweep_interval)),
    ]
    logger.info("%s listening on port %d", SERVER_NAME, settings.port)
    logger.info("MCP Streamable HTTP: /mcp | MCP SSE (legacy): /sse + /messages")
    logger.info("REST endpoints: /capture-charts, /config | OpenAPI: %s/openapi.json", settings.base_url)

    try:
        yield
    finally:
        logger.info("Shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await registry.close_all()


def create_app(
    settings: Optional[Settings] = None,
    config: ChartConfig = DEFAULT_CHART_CONFIG,
    pipeline: Optional[CapturePipeline] = None,
    registry: Optional[SessionRegistry] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Shared services live on `app.state` so routes and tests can reach them
    without the lifespan having run.
    """
    settings = settings or Settings.from_env()
    app = FastAPI(title="Chart Screener", version=SERVER_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", SESSION_HEADER],
        expose_headers=[SESSION_HEADER],
    )

    store = ArtifactStore(settings.screenshots_dir, base_url=settings.base_url)
    if pipeline is None:
        pipeline = CapturePipeline(
            config,
            launcher=chromium_launcher(headless=settings.browser_headless),
            artifact_store=store,
        )
    if registry is None:
        registry = SessionRegistry(ttl_seconds=settings.session_ttl_seconds)
    server_factory = partial(
        create_screener_server,
        pipeline,
        config,
        artifact_store=store,
        use_urls=settings.mcp_image_urls,
    )

    app.state.settings = settings
    app.state.chart_config = config
    app.state.artifact_store = store
    app.state.capture_pipeline = pipeline
    app.state.session_registry = registry
    app.state.transport_router = TransportRouter(registry, server_factory)

    @app.get("/health")
    async def health(request: Request):
        """Simple health check reporting the number of live MCP sessions."""
        return {"ok": True, "sessions": len(request.app.state.session_registry)}

    # Register application routers
    app.include_router(mcp_router)
    app.include_router(sse_router)
    app.include_router(capture_router)
    app.include_router(artifact_router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
