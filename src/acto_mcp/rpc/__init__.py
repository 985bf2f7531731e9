"""MCP session client: envelope codec, session lifecycle and call execution."""

from acto_mcp.rpc.client import McpClient, extract_id, extract_records
from acto_mcp.rpc.envelope import (
    SESSION_NOT_FOUND_CODE,
    ErrorEnvelope,
    ResultEnvelope,
    decode,
    encode,
    unwrap_result,
)
from acto_mcp.rpc.errors import (
    MalformedEnvelope,
    McpClientError,
    ProtocolError,
    SessionError,
    ToolError,
    TransportError,
)
from acto_mcp.rpc.manager import McpClientManager, UnknownToolError
from acto_mcp.rpc.session import Session, SessionManager

__all__ = [
    # Client
    "McpClient",
    "McpClientManager",
    "Session",
    "SessionManager",
    "extract_id",
    "extract_records",
    # Codec
    "ErrorEnvelope",
    "ResultEnvelope",
    "SESSION_NOT_FOUND_CODE",
    "decode",
    "encode",
    "unwrap_result",
    # Errors
    "McpClientError",
    "MalformedEnvelope",
    "ProtocolError",
    "SessionError",
    "ToolError",
    "TransportError",
    "UnknownToolError",
]
