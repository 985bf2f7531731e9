"""Configuration module for the ACTO MCP client."""

from acto_mcp.config.logging import configure_logging, get_logger
from acto_mcp.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging", "get_logger"]
