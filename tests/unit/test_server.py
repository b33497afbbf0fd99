"""Unit tests for MCP server wiring."""

import pytest

from feed_sync.config import ServerConfig
from feed_sync.server.app import create_mcp_server
from feed_sync.tools.feed_tools import feed_tools


# Mark all tests as async
pytestmark = pytest.mark.anyio


async def test_all_feed_tools_registered():
    server = create_mcp_server(ServerConfig(name="feed_sync_test"))

    tools = await server.list_tools()

    assert server.name == "feed_sync_test"
    assert sorted(t.name for t in tools) == sorted(f.__name__ for f in feed_tools)


async def test_tool_schemas_hide_context():
    server = create_mcp_server(ServerConfig())

    tools = {t.name: t for t in await server.list_tools()}

    assert "ctx" not in tools["add_feed"].inputSchema["properties"]
    assert tools["add_feed"].inputSchema["required"] == ["url"]
