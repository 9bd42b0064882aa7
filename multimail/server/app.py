"""MCP server entry point: exposes the tool surface over stdio."""

import logging
from typing import Any

from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from multimail.config import Settings
from multimail.runtime import open_runtime
from multimail.server.tools import ToolSurface

logger = logging.getLogger(__name__)

SERVER_NAME = "email-mcp-server"
SERVER_VERSION = "0.1.0"


def build_server(surface: ToolSurface) -> Server:
    """Return an MCP Server whose tools are served by surface.

    Input validation is left to ToolSurface so schema errors come back as
    tool-error envelopes rather than protocol errors.
    """
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return surface.list_tools()

    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        result = await surface.call(name, arguments)
        if result.isError:
            # The low-level server turns a raised error into an isError result.
            raise ToolError(_text_of(result))
        return [c for c in result.content if isinstance(c, types.TextContent)]

    return server


class ToolError(Exception):
    """Carries an error envelope's text through the MCP call_tool handler."""


def _text_of(result: types.CallToolResult) -> str:
    return "\n".join(c.text for c in result.content if isinstance(c, types.TextContent))


async def serve_stdio(settings: Settings) -> None:
    """Run the MCP server for settings.user_id until stdin closes."""
    async with open_runtime(settings) as runtime:
        server = build_server(runtime.tools)
        logger.info("Email MCP server running on stdio for user %s", settings.user_id)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    logger.info("Email MCP server stopped")
