"""MCP server package initialization"""

from feed_sync.server.app import create_mcp_server, server

__all__ = ["server", "create_mcp_server"]
