"""ACTO MCP - stateful session client for the ACTO accounting data API."""

__version__ = "0.1.0"

from acto_mcp.config import configure_logging, get_settings
from acto_mcp.data import BatchItemResult, DataAccess
from acto_mcp.migration import MigrationResult, migrate_entities
from acto_mcp.rpc import (
    MalformedEnvelope,
    McpClient,
    McpClientError,
    McpClientManager,
    ProtocolError,
    SessionError,
    ToolError,
    TransportError,
    UnknownToolError,
)
from acto_mcp.tools import ToolExecutionError, ToolExecutor

__all__ = [
    # Version
    "__version__",
    # Client
    "McpClient",
    "McpClientManager",
    # Data access
    "DataAccess",
    "BatchItemResult",
    # Migration
    "MigrationResult",
    "migrate_entities",
    # Tools
    "ToolExecutor",
    "ToolExecutionError",
    # Errors
    "McpClientError",
    "MalformedEnvelope",
    "ProtocolError",
    "SessionError",
    "ToolError",
    "TransportError",
    "UnknownToolError",
    # Config
    "get_settings",
    "configure_logging",
]
