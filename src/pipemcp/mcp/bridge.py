"""Helper-side MCP server.

An MCP client (an editor, an agent) talks to the helper on stdin/stdout.  The
helper answers ``tools/list`` and ``tools/call`` by forwarding them to the
host through a :class:`~pipemcp.ipc.client.PipeClient`.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from pipemcp.ipc.errors import PipeMCPError, ToolCallError
from pipemcp.version import get_pipemcp_version

if TYPE_CHECKING:
    from pipemcp.ipc.client import PipeClient

logger = logging.getLogger(__name__)

DEFAULT_SERVER_NAME = "pipemcp"


class HelperBridge:
    """Translates between MCP tool types and pipe requests."""

    def __init__(self, client: PipeClient) -> None:
        self._client = client

    @property
    def client(self) -> PipeClient:
        return self._client

    async def list_tools(self) -> list[Tool]:
        """Tools served by the host; empty when the host cannot be reached."""
        try:
            tools = await self._client.list_tools()
        except PipeMCPError as exc:
            logger.warning("Could not fetch tool list from host: %s", exc)
            return []
        return [
            Tool(
                name=meta.name,
                description=meta.description or None,
                inputSchema=meta.input_schema,
            )
            for meta in tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """Run *name* on the host.

        Raises:
            ToolCallError: The host reported an error, or the call could not
                complete (timeout, cancellation, broken pipe).
        """
        try:
            payload = await self._client.call(name, arguments or {})
        except ToolCallError:
            raise
        except PipeMCPError as exc:
            raise ToolCallError(name, str(exc)) from exc
        text = payload if isinstance(payload, str) else json.dumps(payload)
        return [TextContent(type="text", text=text)]


def build_server(bridge: HelperBridge, *, name: str = DEFAULT_SERVER_NAME) -> Server:
    """Create a low-level MCP server whose tools live on the host."""
    server: Server = Server(name, version=get_pipemcp_version())

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return await bridge.list_tools()

    @server.call_tool()
    async def call_tool(tool_name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await bridge.call_tool(tool_name, arguments)

    return server


async def serve_stdio(bridge: HelperBridge, *, name: str = DEFAULT_SERVER_NAME) -> None:
    """Serve MCP on stdin/stdout until the client disconnects."""
    server = build_server(bridge, name=name)
    logger.info("Serving MCP on stdio as %s (client %s)", name, bridge.client.client_id)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


__all__ = ["DEFAULT_SERVER_NAME", "HelperBridge", "build_server", "serve_stdio"]
