"""Tool executor that bridges LLM tool calls to MCP servers."""

from typing import Any

import structlog

from acto_mcp.rpc.errors import McpClientError, ProtocolError, TransportError
from acto_mcp.rpc.manager import McpClientManager

logger = structlog.get_logger(__name__)


class ToolExecutionError(Exception):
    """Error during tool execution."""

    def __init__(self, tool_name: str, message: str, details: Any = None):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name
        self.details = details


class ToolExecutor:
    """Executes LLM tool calls against the registered MCP servers."""

    def __init__(self, manager: McpClientManager):
        self.manager = manager

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        auth_token: str | None = None,
    ) -> dict[str, Any]:
        """Execute a tool call and return the result."""
        if not self.manager.has_tool(tool_name):
            raise ToolExecutionError(tool_name, f"Unknown tool: {tool_name}")

        logger.info("executing_tool", tool=tool_name, args=arguments)

        try:
            result = await self.manager.call_tool(tool_name, arguments, auth_token=auth_token)
            logger.info("tool_executed", tool=tool_name, success=True)
            return {"success": True, "result": result}
        except ProtocolError as e:
            logger.warning("tool_protocol_error", tool=tool_name, code=e.code, details=e.data)
            return {
                "success": False,
                "error": e.message,
                "code": e.code,
                "details": e.data,
            }
        except TransportError as e:
            logger.warning("tool_transport_error", tool=tool_name, status=e.status_code)
            return {
                "success": False,
                "error": str(e),
                "status_code": e.status_code,
                "details": e.details,
            }
        except McpClientError as e:
            logger.warning("tool_client_error", tool=tool_name, error=str(e))
            return {"success": False, "error": str(e), "details": e.details}
