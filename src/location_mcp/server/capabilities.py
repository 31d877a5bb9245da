"""Tools and resources exposed to the MCP client, bound to exactly one identity."""

from __future__ import annotations

import json

from location_mcp import __version__
from location_mcp.exceptions import McpError
from location_mcp.server.lowlevel import LowLevelServer, RequestContext
from location_mcp.stores import LocationStore
from location_mcp.types import (
    INVALID_PARAMS,
    RESOURCE_NOT_FOUND,
    CallToolRequestParams,
    CallToolResult,
    ListResourcesResult,
    ListToolsResult,
    ReadResourceRequestParams,
    ReadResourceResult,
    Resource,
    TextContent,
    TextResourceContents,
    Tool,
)
from location_mcp.types.tools import ToolAnnotations
from location_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

SERVER_NAME = "location-mcp"
SERVER_VERSION = __version__

MY_LOCATION_URI = "location://me"

NOT_SHARED_MESSAGE = (
    "Your location has not been shared yet. Please update your location from the mobile app first."
)

TOOLS = [
    Tool(
        name="get_my_location",
        description="Get your current location",
        annotations=ToolAnnotations(read_only_hint=True, idempotent_hint=True),
    ),
    Tool(
        name="is_sharing_location",
        description="Check if you are currently sharing your location",
        annotations=ToolAnnotations(read_only_hint=True, idempotent_hint=True),
    ),
]

RESOURCES = [
    Resource(
        uri=MY_LOCATION_URI,
        name="my-location",
        description="Your current location",
        mime_type="application/json",
    ),
]


class CapabilitySet:
    """The capabilities of one MCP server instance, closed over a single identity.

    A new set, and a new server, is built per identity and never shared, so a
    handler can only ever read the location of the identity it was built for.
    """

    def __init__(self, identity: str, locations: LocationStore):
        self._identity = identity
        self._locations = locations

    @property
    def identity(self) -> str:
        return self._identity

    def build_server(self) -> LowLevelServer:
        server = LowLevelServer(name=SERVER_NAME, version=SERVER_VERSION)
        server.request_handler("tools/list")(self._list_tools)
        server.request_handler("tools/call")(self._call_tool)
        server.request_handler("resources/list")(self._list_resources)
        server.request_handler("resources/read")(self._read_resource)
        return server

    async def _list_tools(self, ctx: RequestContext) -> ListToolsResult:
        return ListToolsResult(tools=TOOLS)

    async def _call_tool(self, ctx: RequestContext) -> CallToolResult:
        params = CallToolRequestParams.model_validate(ctx.params)
        if params.name == "get_my_location":
            tool = self._get_my_location
        elif params.name == "is_sharing_location":
            tool = self._is_sharing_location
        else:
            raise McpError(INVALID_PARAMS, f"Unknown tool: {params.name}")

        await ctx.report_progress(0, 1)
        try:
            text = await tool()
        except Exception:
            logger.exception("Tool %s failed for user %s", params.name, self._identity)
            return CallToolResult(
                content=[TextContent(text=f"Error executing tool {params.name}: location lookup failed")],
                is_error=True,
            )
        await ctx.report_progress(1, 1)
        return CallToolResult(content=[TextContent(text=text)])

    async def _get_my_location(self) -> str:
        location = await self._locations.get_location(self._identity)
        if location is None:
            return NOT_SHARED_MESSAGE
        return json.dumps(location.to_json(), indent=2)

    async def _is_sharing_location(self) -> str:
        location = await self._locations.get_location(self._identity)
        last_updated = location.to_json()["timestamp"] if location else None
        return json.dumps({"isSharing": location is not None, "lastUpdated": last_updated}, indent=2)

    async def _list_resources(self, ctx: RequestContext) -> ListResourcesResult:
        return ListResourcesResult(resources=RESOURCES)

    async def _read_resource(self, ctx: RequestContext) -> ReadResourceResult:
        params = ReadResourceRequestParams.model_validate(ctx.params)
        if params.uri != MY_LOCATION_URI:
            raise McpError(RESOURCE_NOT_FOUND, f"Resource not found: {params.uri}", data={"uri": params.uri})

        location = await self._locations.get_location(self._identity)
        if location is None:
            payload = {"error": "No location data available", "message": "Your location has not been shared yet"}
        else:
            payload = location.to_json()
        return ReadResourceResult(
            contents=[
                TextResourceContents(
                    uri=MY_LOCATION_URI,
                    mime_type="application/json",
                    text=json.dumps(payload, indent=2),
                )
            ]
        )
