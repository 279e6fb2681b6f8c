"""MCP server for project memory."""

import asyncio
import logging
import signal
import sys
import traceback

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .config import Settings
from .handlers import (
    dispatch,
    list_resource_definitions,
    list_tool_definitions,
    read_graph_resource,
)
from .service import get_service

logger = logging.getLogger("projgraph")

server = Server("projgraph")


def setup_logging(settings: Settings) -> None:
    """Log to stderr (stdout carries the protocol) and optionally a file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""
    return list_tool_definitions()


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    return await dispatch(get_service(), name, arguments)


@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available MCP resources."""
    return list_resource_definitions()


@server.read_resource()
async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
    """Serve the complete project state for a graph resource URI."""
    text = await read_graph_resource(get_service(), str(uri))
    return [ReadResourceContents(content=text, mime_type="application/json")]


def main():
    """Entry point for the MCP server."""
    settings = Settings.from_env()
    setup_logging(settings)
    logger.info("projgraph MCP server starting")
    try:
        asyncio.run(_run_server())
    except Exception as e:
        logger.error(f"Server crashed: {e}")
        logger.error(traceback.format_exc())
        raise


async def _run_server():
    """Run the MCP server until stdin closes or a termination signal arrives.

    Tracked file locks are always released before returning.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, task.cancel)

    try:
        async with stdio_server() as (read, write):
            await server.run(read, write, server.create_initialization_options())
    except asyncio.CancelledError:
        logger.info("Shutdown signal received")
    finally:
        await get_service().shutdown()


if __name__ == "__main__":
    main()
