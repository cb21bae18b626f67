"""MCP stdio server that forwards tool calls to the host over named pipes."""

from __future__ import annotations

from pipemcp.mcp.bridge import HelperBridge, build_server, serve_stdio

__all__ = ["HelperBridge", "build_server", "serve_stdio"]
