"""Routes tool calls across several MCP servers.

Each server's tools are discovered with `tools/list` and registered under
both their own name and a ``<server>_<tool>`` alias, so an LLM can be handed
one flat list of function tools.
"""

import asyncio
import contextlib
import re
from dataclasses import dataclass
from typing import Any

import structlog

from acto_mcp.config import get_settings
from acto_mcp.rpc.client import McpClient
from acto_mcp.rpc.errors import McpClientError

logger = structlog.get_logger(__name__)


class UnknownToolError(McpClientError):
    """No registered server exposes the requested tool."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


@dataclass
class ToolRoute:
    """Where a registered tool name is served."""

    server: McpClient
    original_name: str


class McpClientManager:
    """Aggregates tools from multiple MCP servers and routes calls."""

    def __init__(
        self,
        discovery_retries: int | None = None,
        discovery_retry_interval: float | None = None,
    ):
        settings = get_settings()
        self._discovery_retries = (
            discovery_retries if discovery_retries is not None else settings.mcp_discovery_retries
        )
        self._discovery_retry_interval = (
            discovery_retry_interval
            if discovery_retry_interval is not None
            else settings.mcp_discovery_retry_interval
        )

        self.servers: dict[str, McpClient] = {}
        self._routes: dict[str, ToolRoute] = {}
        self._tools: list[dict[str, Any]] = []
        self._retry_task: asyncio.Task[list[str]] | None = None

        self._logger = logger.bind(component="mcp_manager")

    def add_server(
        self,
        name: str,
        url: str,
        headers: dict[str, str] | None = None,
        **client_options: Any,
    ) -> McpClient:
        """Register a server. Extra options are passed to McpClient."""
        server = McpClient(url=url, name=name, headers=headers, **client_options)
        self.servers[name] = server
        return server

    def get_server(self, name: str) -> McpClient | None:
        return self.servers.get(name)

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._routes

    def tools_for_ai(self) -> list[dict[str, Any]]:
        """Discovered tools as LLM function-tool descriptors."""
        return list(self._tools)

    async def discover_all_tools(self) -> list[dict[str, Any]]:
        """Discover tools on every server.

        Servers that cannot be reached are retried in the background.
        """
        self._routes.clear()
        self._tools = []
        failed: list[str] = []

        for name, server in self.servers.items():
            try:
                tools = await server.list_tools()
            except McpClientError as e:
                self._logger.warning("tool_discovery_failed", server=name, error=str(e))
                failed.append(name)
                continue
            self._register_tools(name, tools)

        self._logger.info("tools_registered", total=len(self._tools), failed=failed)

        if failed and self._discovery_retries > 0:
            self._logger.info("scheduling_discovery_retry", servers=failed)
            self._retry_task = asyncio.create_task(self.retry_failed_servers(failed))

        return self.tools_for_ai()

    def _register_tools(self, server_name: str, tools: list[dict[str, Any]]) -> None:
        server = self.servers[server_name]
        for tool in tools:
            tool_name = tool.get("name")
            if not tool_name:
                continue
            prefixed = re.sub(r"_+", "_", f"{server_name}_{tool_name}")
            route = ToolRoute(server=server, original_name=tool_name)
            self._routes[prefixed] = route
            self._routes[tool_name] = route

            self._tools.append({
                "type": "function",
                "function": {
                    "name": prefixed,
                    "description": f"[{server_name.upper()}] {tool.get('description', '')}",
                    "parameters": tool.get("inputSchema") or {"type": "object", "properties": {}},
                },
            })

    async def retry_failed_servers(self, server_names: list[str]) -> list[str]:
        """Keep retrying discovery for servers that failed.

        Returns the servers that were still unreachable when retries ran out.
        """
        remaining = list(server_names)
        for attempt in range(1, self._discovery_retries + 1):
            if not remaining:
                break
            await asyncio.sleep(self._discovery_retry_interval)
            self._logger.info(
                "discovery_retry",
                attempt=attempt,
                max_retries=self._discovery_retries,
                servers=remaining,
            )

            still_failed = []
            for name in remaining:
                server = self.servers.get(name)
                if server is None:
                    continue
                # Start from a clean session
                server.session.invalidate()
                try:
                    tools = await server.list_tools()
                except McpClientError as e:
                    self._logger.debug("discovery_retry_failed", server=name, error=str(e))
                    still_failed.append(name)
                    continue
                self._register_tools(name, tools)
                self._logger.info(
                    "server_connected", server=name, tools=len(tools), total=len(self._tools)
                )
            remaining = still_failed

        if remaining:
            self._logger.error("discovery_gave_up", servers=remaining)
        return remaining

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        auth_token: str | None = None,
    ) -> Any:
        """Route a tool call to the server that registered it."""
        route = self._routes.get(tool_name)
        if route is None:
            raise UnknownToolError(tool_name)

        self._logger.debug(
            "routing_tool_call",
            tool=tool_name,
            server=route.server.name,
            original_name=route.original_name,
        )
        return await route.server.call_tool(route.original_name, arguments, auth_token=auth_token)

    async def close(self) -> None:
        """Cancel background discovery and close every server client."""
        if self._retry_task is not None:
            self._retry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._retry_task
            self._retry_task = None
        await asyncio.gather(
            *(server.close() for server in self.servers.values()), return_exceptions=True
        )
