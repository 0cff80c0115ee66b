"""MCP server wiring over stdio or HTTP/SSE."""

import logging

import mcp.server.stdio
import uvicorn
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.sse import SseServerTransport
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route

from . import __version__
from .config import ServerConfig
from .image_processor import ImageProcessor
from .providers.openai import OpenAICompatibleClient
from .tools import TOOL_DEFINITIONS, ImageTools

logger = logging.getLogger(__name__)

SERVER_NAME = "image-mcp"


class ToolCallError(Exception):
    """Carries an error result through the MCP SDK, which reports it with isError."""


def create_mcp_server(tools: ImageTools) -> Server:
    """Register the image tools on a low-level MCP server."""
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return TOOL_DEFINITIONS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
        logger.debug(f"Tool call: {name} ({', '.join(sorted(arguments or {}))})")
        result = await tools.call_tool(name, arguments)
        if result.is_error:
            raise ToolCallError(result.text)
        return [types.TextContent(type="text", text=result.text)]

    return server


def create_http_app(server: Server) -> Starlette:
    """Starlette app exposing the MCP SSE transport and a health check."""
    sse = SseServerTransport("/messages/")

    async def handle_sse(request: Request) -> Response:
        async with sse.connect_sse(request.scope, request.receive, request._send) as streams:
            await server.run(streams[0], streams[1], server.create_initialization_options())
        return Response()

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "transport": "sse"})

    return Starlette(
        routes=[
            Route("/sse", endpoint=handle_sse, methods=["GET"]),
            Mount("/messages/", app=sse.handle_post_message),
            Route("/health", endpoint=health, methods=["GET"]),
        ]
    )


async def run_stdio(server: Server) -> None:
    logger.info("Image MCP server running on stdio")
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


async def run_http(server: Server, config: ServerConfig) -> None:
    app = create_http_app(server)
    logger.info(f"Image MCP server running on http://{config.host}:{config.port}")
    logger.info(f"SSE endpoint: http://{config.host}:{config.port}/sse")
    uvicorn_config = uvicorn.Config(app, host=config.host, port=config.port, log_level="warning")
    await uvicorn.Server(uvicorn_config).serve()


def create_client(config: ServerConfig) -> OpenAICompatibleClient:
    return OpenAICompatibleClient(
        base_url=config.base_url,
        api_key=config.api_key,
        timeout_ms=config.timeout_ms,
        max_retries=config.max_retries,
    )


async def serve(config: ServerConfig) -> None:
    """Build the tools from ``config`` and serve until the transport closes."""
    async with create_client(config) as client:
        tools = ImageTools(
            processor=ImageProcessor(),
            client=client,
            model=config.model,
            streaming=config.streaming_enabled,
        )
        server = create_mcp_server(tools)

        if config.use_http:
            await run_http(server, config)
        else:
            await run_stdio(server)
