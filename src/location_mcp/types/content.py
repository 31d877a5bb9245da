"""MCP Content Types - Content blocks used in tool results and resources."""

from typing import Annotated, Literal

from pydantic import Field

from location_mcp.types.base import MCPModel


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str


class TextResourceContents(MCPModel):
    """Text contents of a resource."""

    uri: str
    mime_type: Annotated[str | None, Field(alias="mimeType")] = None
    text: str
