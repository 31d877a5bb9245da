"""MCP Tools Types - Types for tool listing and invocation."""

from typing import Annotated, Any, Literal

from pydantic import Field

from location_mcp.types.base import MCPModel, RequestParams, Result
from location_mcp.types.content import TextContent


class JsonSchema(MCPModel):
    """A JSON Schema object."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] = Field(default_factory=dict)
    required: list[str] | None = None


class ToolAnnotations(MCPModel):
    """Additional properties describing a Tool to clients."""

    read_only_hint: Annotated[bool | None, Field(alias="readOnlyHint")] = None
    idempotent_hint: Annotated[bool | None, Field(alias="idempotentHint")] = None
    title: str | None = None


class Tool(MCPModel):
    """Definition of a tool the server provides."""

    name: str
    input_schema: JsonSchema = Field(default_factory=JsonSchema, alias="inputSchema")
    description: str | None = None
    annotations: ToolAnnotations | None = None


class ListToolsResult(Result):
    """Server's response to a tools/list request."""

    tools: list[Tool]
    next_cursor: Annotated[str | None, Field(alias="nextCursor")] = None


class CallToolRequestParams(RequestParams):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] | None = None


class CallToolResult(Result):
    """Server's response to a tools/call request."""

    content: list[TextContent]
    is_error: Annotated[bool, Field(alias="isError")] = False
