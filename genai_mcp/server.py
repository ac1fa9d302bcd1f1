#!/usr/bin/env python3
"""
MCP Server Entrypoint

Stateless MCP endpoint over HTTP. Every request to /mcp gets its own tool
registry, transport and protocol session; nothing is shared between requests
except the settings snapshot.
Tools are automatically discovered via registry.py
"""

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .config import SHUTDOWN_GRACE_SECONDS, Settings, load_settings
from .lifecycle import GracefulServer, LifecycleSupervisor, RegistryFactory
from .registry import create_registry, list_tool_names

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

LIVENESS_TEXT = "Hello, MCP Server is available at /mcp"


def create_app(settings: Optional[Settings] = None, registry_factory: Optional[RegistryFactory] = None) -> FastAPI:
    """Build the ASGI application around one settings snapshot."""
    settings = settings or load_settings()
    supervisor = LifecycleSupervisor(settings, registry_factory or create_registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup: discover tools
        names = list_tool_names()
        logger.info(f"MCP Server starting with {len(names)} tools")
        for name in names:
            logger.info(f"  - {name}")
        supervisor.bind_loop(asyncio.get_running_loop())

        yield

        # Shutdown: end any stream still open
        supervisor.begin_shutdown()
        logger.info("MCP Server shutting down")

    app = FastAPI(
        title=settings.server_name,
        description="Stateless Model Context Protocol server for Gemini and connpass tools",
        version=settings.server_version,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.supervisor = supervisor

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return LIVENESS_TEXT

    @app.get("/health")
    async def health():
        return {"status": "healthy", "tools_loaded": len(list_tool_names())}

    @app.api_route("/mcp", methods=["GET", "POST"])
    async def mcp_endpoint(request: Request):
        return await supervisor.handle(request)

    return app


def main():
    """Run the MCP server."""
    try:
        settings = load_settings()
        app = create_app(settings)
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        sys.exit(1)

    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(SHUTDOWN_GRACE_SECONDS),
    )
    server = GracefulServer(config, app.state.supervisor)

    logger.info(f"🚀 MCP server listening on http://{settings.host}:{settings.port}")
    try:
        server.run()
    finally:
        server.cancel_force_exit()

    if not server.started:
        logger.error("Failed to start server")
        sys.exit(1)
    logger.info("✅ Server closed successfully")


if __name__ == "__main__":
    main()
