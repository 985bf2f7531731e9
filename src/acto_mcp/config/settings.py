"""Configuration settings for the ACTO MCP client."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # MCP endpoints
    dab_mcp_url: str = Field(
        default="http://localhost:5000/mcp", validation_alias="DAB_MCP_URL"
    )
    qbo_mcp_url: str | None = Field(default=None, validation_alias="QBO_MCP_URL")

    # Client identification sent with `initialize`
    mcp_client_name: str = Field(default="chat-api", validation_alias="MCP_CLIENT_NAME")
    mcp_client_version: str = Field(default="1.0.0", validation_alias="MCP_CLIENT_VERSION")
    mcp_protocol_version: str = Field(
        default="2024-11-05", validation_alias="MCP_PROTOCOL_VERSION"
    )

    # Timeouts (seconds)
    mcp_timeout: float = Field(default=15.0, validation_alias="MCP_TIMEOUT")
    mcp_tool_timeout: float = Field(default=60.0, validation_alias="MCP_TOOL_TIMEOUT")

    # Session keep-alive (seconds)
    mcp_keepalive_interval: float = Field(
        default=30.0, validation_alias="MCP_KEEPALIVE_INTERVAL"
    )
    mcp_session_timeout: float = Field(
        default=120.0, validation_alias="MCP_SESSION_TIMEOUT"
    )

    # Batch & cache layer
    mcp_cache_ttl: float = Field(default=60.0, validation_alias="MCP_CACHE_TTL")
    mcp_batch_concurrency: int = Field(default=5, validation_alias="MCP_BATCH_CONCURRENCY")

    # Role header sent alongside forwarded bearer tokens
    mcp_api_role: str = Field(default="Admin", validation_alias="MCP_API_ROLE")

    # Background tool discovery for servers that were down at startup
    mcp_discovery_retries: int = Field(default=10, validation_alias="MCP_DISCOVERY_RETRIES")
    mcp_discovery_retry_interval: float = Field(
        default=30.0, validation_alias="MCP_DISCOVERY_RETRY_INTERVAL"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
