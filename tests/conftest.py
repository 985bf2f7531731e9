"""Pytest configuration and fixtures."""

import inspect
import json
import os
from collections.abc import Callable
from typing import Any

import httpx
import pytest

# Set test environment variables before importing settings
os.environ.setdefault("DAB_MCP_URL", "http://dab.test/mcp")
os.environ.setdefault("MCP_CLIENT_NAME", "chat-api")

from acto_mcp.rpc.client import McpClient  # noqa: E402

SESSION_HEADER = "mcp-session-id"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubMcpServer:
    """Scriptable MCP server served through httpx.MockTransport.

    `initialize` hands out session ids ``session-1``, ``session-2``, ... and
    any other request carrying an unknown session id gets a -32001 error (or
    HTTP 404 with ``expire_with_404``). Tools are plain callables taking the
    arguments dict; their return value is double-encoded as text content the
    way the data API does it.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.request_headers: list[httpx.Headers] = []
        self.tools: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.methods: dict[str, Callable[[dict[str, Any], httpx.Request], Any]] = {}
        self.valid_sessions: set[str] = set()
        self.use_sse = False
        self.expire_with_404 = False
        self.assign_session_id = True
        self._session_counter = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    # === Introspection ===

    def count(self, method: str) -> int:
        return sum(1 for body in self.requests if body.get("method") == method)

    def tool_calls(self, name: str | None = None) -> list[dict[str, Any]]:
        return [
            body["params"]
            for body in self.requests
            if body.get("method") == "tools/call"
            and (name is None or body["params"]["name"] == name)
        ]

    def expire_sessions(self) -> None:
        self.valid_sessions.clear()

    # === Response builders ===

    def respond(
        self,
        request_id: Any,
        result: Any = None,
        error: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        status_code: int = 200,
    ) -> httpx.Response:
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
        if error is not None:
            message["error"] = error
        else:
            message["result"] = result
        if self.use_sse:
            text = f"event: message\ndata: {json.dumps(message)}\n\n"
            response_headers = {"content-type": "text/event-stream", **(headers or {})}
            return httpx.Response(status_code, text=text, headers=response_headers)
        return httpx.Response(status_code, json=message, headers=headers)

    @staticmethod
    def tool_result(payload: Any) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": json.dumps(payload)}]}

    # === Dispatch ===

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        self.request_headers.append(request.headers)
        method = body["method"]
        request_id = body.get("id")

        if method in self.methods:
            outcome = self.methods[method](body, request)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return outcome

        if method == "initialize":
            return self._initialize(request_id)

        session_id = request.headers.get(SESSION_HEADER)
        if session_id not in self.valid_sessions:
            if self.expire_with_404:
                return httpx.Response(404, text="Session not found")
            return self.respond(request_id, error={"code": -32001, "message": "Session not found"})

        if method == "ping":
            return self.respond(request_id, {})
        if method == "tools/list":
            tools = [
                {"name": name, "description": f"{name} tool", "inputSchema": {"type": "object"}}
                for name in self.tools
            ]
            return self.respond(request_id, {"tools": tools})
        if method == "tools/call":
            name = body["params"]["name"]
            tool = self.tools.get(name)
            if tool is None:
                return self.respond(
                    request_id, error={"code": -32602, "message": f"Unknown tool: {name}"}
                )
            payload = tool(body["params"]["arguments"])
            if inspect.isawaitable(payload):
                payload = await payload
            return self.respond(request_id, self.tool_result(payload))

        return self.respond(request_id, error={"code": -32601, "message": "Method not found"})

    def _initialize(self, request_id: Any) -> httpx.Response:
        self._session_counter += 1
        session_id = f"session-{self._session_counter}"
        headers = {}
        if self.assign_session_id:
            self.valid_sessions.add(session_id)
            headers[SESSION_HEADER] = session_id
        return self.respond(
            request_id,
            {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "stub-dab", "version": "1.0.0"},
            },
            headers=headers,
        )


@pytest.fixture
def stub_server():
    """A fresh stub MCP server."""
    return StubMcpServer()


@pytest.fixture
def fake_clock():
    """A manually advanced clock."""
    return FakeClock()


@pytest.fixture
def make_client(stub_server, fake_clock):
    """Factory for McpClient instances wired to the stub server.

    Keep-alive is off unless a test asks for it.
    """

    def factory(**options: Any) -> McpClient:
        options.setdefault("keepalive_interval", 0)
        options.setdefault("clock", fake_clock)
        return McpClient(
            url="http://dab.test/mcp",
            transport=stub_server.transport(),
            **options,
        )

    return factory


@pytest.fixture
def customer_records():
    """Customers held by the stub data API."""
    return [
        {"Id": "cust-1", "Name": "Acme Corp", "Email": "a@x.com"},
        {"Id": "cust-2", "Name": "O'Brien Plumbing", "Email": "obrien@x.com"},
    ]


@pytest.fixture
def stub_server_factory():
    """Factory for extra stub servers in multi-server tests."""
    return StubMcpServer
