"""feed_sync - RSS/Atom/JSON feed sync engine exposed as an MCP server."""

__version__ = "0.1.0"
