"""Server settings, configurable via ``LOCATION_MCP_*`` environment variables."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Location MCP server settings.

    All settings can be configured via environment variables with the prefix LOCATION_MCP_.
    For example, LOCATION_MCP_STATELESS_HTTP=false selects the stateful session design.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCATION_MCP_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 3000
    mcp_path: str = "/api/mcp"
    location_path: str = "/api/location"
    max_body_bytes: int | None = 1_000_000

    # Transport settings
    stateless_http: bool = True
    """Create a fresh server and transport for every request instead of keeping one session per identity."""

    json_response: bool = False
    """Always answer POST with JSON, never with an event stream."""

    stream_idle_timeout: float = Field(default=300.0, gt=0)
    """Seconds a GET event stream may stay silent before the server closes it."""

    sse_ping_interval: int = Field(default=15, gt=0)

    # Seed keys for the in-memory validator, API key -> user id
    api_keys: dict[str, str] = Field(default_factory=dict)
