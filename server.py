"""
Entry point: serve the OPUS MCP tools over stdio or streamable HTTP.
"""
import argparse
import asyncio
import contextlib
import logging
import os
import platform
import sys
import time
import traceback
from datetime import timedelta
from typing import List, Optional

import uvicorn
from mcp.server.fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount, Route

from opus_config import load_environment
from opus_main import ToolContext, build_server, list_tool_names
from opus_metadata import APP_NAME, APP_TITLE, BUILD_TIME, BUILD_VERSION

logger = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "http")

BANNER = r"""
  ___  ____  _   _ ____    __  __  ____ ____
 / _ \|  _ \| | | / ___|  |  \/  |/ ___|  _ \
| | | | |_) | | | \___ \  | |\/| | |   | |_) |
| |_| |  __/| |_| |___) | | |  | | |___|  __/
 \___/|_|    \___/|____/  |_|  |_|\____|_|
"""


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging. Logs go to stderr because stdout carries the
    protocol when running over stdio.
    """
    level = level or os.environ.get("OPUS_MCP_LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


async def homepage(request: Request) -> PlainTextResponse:
    return PlainTextResponse("Use /mcp to access the MCP server.")


async def health_handler(request: Request) -> JSONResponse:
    """Liveness information for load balancers and humans."""
    uptime = timedelta(seconds=time.monotonic() - request.app.state.start_time)
    return JSONResponse(
        content={
            "status": "ok",
            "name": f"{APP_TITLE} ({APP_NAME})",
            "buildVersion": BUILD_VERSION,
            "buildTime": BUILD_TIME,
            "uptime": str(uptime),
            "os": platform.system().lower(),
            "arch": platform.machine(),
        },
        status_code=200,
    )


async def status_handler(request: Request) -> JSONResponse:
    """Handle requests to the status endpoint"""
    tools: List[str] = []
    try:
        tools = list_tool_names(request.app.state.mcp)
    except Exception as e:
        logger.error(f"Error getting tools: {e}")

    return JSONResponse(
        content={
            "status": "ok",
            "message": f"{APP_TITLE} is running",
            "tools": tools,
        },
        status_code=200,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        logger.info(f"Request {request.method} {request.url.path} from {request.client}")
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Response {request.method} {request.url.path} -> {response.status_code} "
            f"({duration_ms:.1f} ms)"
        )
        return response


def create_starlette_app(mcp: FastMCP, *, context: Optional[ToolContext] = None,
                         debug: bool = False, enable_logging: bool = False) -> Starlette:
    """Create a Starlette application serving the MCP server at /mcp."""
    mcp_app = mcp.streamable_http_app()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        async with mcp.session_manager.run():
            logger.info("Streamable HTTP session manager started")
            try:
                yield
            finally:
                if context is not None:
                    await context.aclose()

    app = Starlette(
        debug=debug,
        routes=[
            Route("/", endpoint=homepage, methods=["GET"]),
            Route("/health", endpoint=health_handler, methods=["GET"]),
            Route("/healthz", endpoint=health_handler, methods=["GET"]),
            Route("/status", endpoint=status_handler, methods=["GET"]),
            Mount("/", app=mcp_app),
        ],
        lifespan=lifespan,
    )
    app.state.mcp = mcp
    app.state.start_time = time.monotonic()

    if enable_logging:
        app.add_middleware(RequestLoggingMiddleware)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )

    return app


def create_app() -> Starlette:
    """Application factory for ``uvicorn --factory server:create_app``."""
    load_environment()
    configure_logging()
    context = ToolContext.from_env()
    return create_starlette_app(build_server(context), context=context)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=APP_NAME, description=APP_TITLE)
    parser.add_argument(
        "--transport", choices=TRANSPORTS, default="stdio",
        help="The transport to use: 'stdio' or 'http' (streamable HTTP). SSE is not offered.",
    )
    parser.add_argument(
        "--host", default="localhost",
        help="Host address for the HTTP server (only used with --transport http)",
    )
    parser.add_argument(
        "--port", type=int, default=8000,
        help="Port for the HTTP server (only used with --transport http)",
    )
    parser.add_argument(
        "--enableLogging", action="store_true",
        help="Enable request and response logging middleware",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    # .env must be loaded first so OPUS_MCP_LOG_LEVEL from it takes effect
    load_environment()
    configure_logging()

    context = ToolContext.from_env()
    mcp = build_server(context)

    try:
        if args.transport == "stdio":
            logger.info(f"Starting {APP_NAME} on stdio")
            try:
                mcp.run(transport="stdio")
            finally:
                # The HTTP transport closes the context in its lifespan
                asyncio.run(context.aclose())
        else:
            app = create_starlette_app(mcp, context=context, enable_logging=args.enableLogging)
            print(BANNER, file=sys.stderr)
            print(f"BuildVersion: {BUILD_VERSION} BuildTime: {BUILD_TIME}.", file=sys.stderr)
            logger.info(f"Starting HTTP server on {args.host}:{args.port}, press Ctrl+C to stop")
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    except Exception:
        logger.critical(f"Server crashed: {traceback.format_exc()}")
        raise


if __name__ == "__main__":
    main()
