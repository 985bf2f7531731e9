"""Tests for the tool executor."""

import httpx
import pytest
import pytest_asyncio

from acto_mcp.rpc.manager import McpClientManager
from acto_mcp.tools.executor import ToolExecutionError, ToolExecutor


@pytest_asyncio.fixture
async def executor(stub_server, fake_clock):
    stub_server.tools["read_records"] = lambda args: {"value": [{"Id": "acct-1"}]}
    manager = McpClientManager(discovery_retries=0)
    manager.add_server(
        "dab",
        "http://dab.test/mcp",
        transport=stub_server.transport(),
        keepalive_interval=0,
        clock=fake_clock,
    )
    await manager.discover_all_tools()
    yield ToolExecutor(manager)
    await manager.close()


class TestToolExecutor:
    """Tests for ToolExecutor.execute()."""

    @pytest.mark.asyncio
    async def test_success(self, executor, stub_server):
        """Test a successful call is wrapped with success=True."""
        result = await executor.execute(
            "dab_read_records", {"entity": "accounts"}, auth_token="tok"
        )

        assert result == {"success": True, "result": {"value": [{"Id": "acct-1"}]}}
        assert stub_server.request_headers[-1]["authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, executor):
        """Test unknown tools raise instead of returning an error dict."""
        with pytest.raises(ToolExecutionError) as exc_info:
            await executor.execute("dab_drop_table", {})

        assert exc_info.value.tool_name == "dab_drop_table"
        assert "Unknown tool" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_protocol_error(self, executor, stub_server):
        """Test server-rejected calls come back as a failed result."""
        stub_server.methods["tools/call"] = lambda body, request: stub_server.respond(
            body["id"],
            error={"code": -32602, "message": "Invalid filter", "data": {"field": "Nme"}},
        )

        result = await executor.execute("read_records", {"entity": "accounts"})

        assert result == {
            "success": False,
            "error": "Invalid filter",
            "code": -32602,
            "details": {"field": "Nme"},
        }

    @pytest.mark.asyncio
    async def test_tool_error(self, executor, stub_server):
        """Test a result flagged isError is reported as a failure."""
        stub_server.methods["tools/call"] = lambda body, request: stub_server.respond(
            body["id"],
            {"content": [{"type": "text", "text": "entity not found"}], "isError": True},
        )

        result = await executor.execute("read_records", {"entity": "nope"})

        assert result["success"] is False
        assert result["code"] is None
        assert "entity not found" in result["error"]

    @pytest.mark.asyncio
    async def test_transport_error(self, executor, stub_server):
        """Test HTTP failures come back with their status code."""
        stub_server.methods["tools/call"] = lambda body, request: httpx.Response(
            500, text="boom"
        )

        result = await executor.execute("read_records", {"entity": "accounts"})

        assert result["success"] is False
        assert result["status_code"] == 500

    @pytest.mark.asyncio
    async def test_session_error(self, executor, stub_server):
        """Test a session that cannot be recovered is reported, not raised."""
        stub_server.assign_session_id = False
        stub_server.expire_sessions()

        result = await executor.execute("read_records", {"entity": "accounts"})

        assert result["success"] is False
        assert "error" in result
