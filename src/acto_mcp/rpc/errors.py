"""Exceptions raised by the MCP session client."""

from typing import Any


class McpClientError(Exception):
    """Base exception for MCP client errors."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class MalformedEnvelope(McpClientError):
    """Response body did not contain a usable JSON-RPC envelope.

    Fatal for the call that received it; never retried.
    """

    def __init__(self, message: str, body: str = ""):
        super().__init__(message, details={"body_size": len(body), "snippet": body[:200]})
        self.body_size = len(body)
        self.snippet = body[:200]


class SessionError(McpClientError):
    """Server no longer recognizes the session, even after re-initializing."""

    pass


class ProtocolError(McpClientError):
    """Server explicitly rejected the request with a JSON-RPC error."""

    def __init__(self, code: int | None, message: str, data: Any = None):
        super().__init__(message, details=data)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"[{self.code}] {self.message}"


class ToolError(ProtocolError):
    """Tool ran but reported failure (`isError` set on the result)."""

    def __init__(self, message: str, data: Any = None):
        super().__init__(None, message, data)


class TransportError(McpClientError):
    """Network failure, timeout, or unexpected HTTP status."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message, details=details)
        self.status_code = status_code
