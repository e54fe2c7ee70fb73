"""MCP middleware for the Browser Control server."""

from .mcp_logging import MCPLoggingMiddleware

__all__ = ["MCPLoggingMiddleware"]
