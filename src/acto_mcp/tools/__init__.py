"""Tools module for the ACTO MCP client."""

from acto_mcp.tools.executor import ToolExecutionError, ToolExecutor

__all__ = [
    "ToolExecutor",
    "ToolExecutionError",
]
