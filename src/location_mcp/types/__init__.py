from location_mcp.types.base import LATEST_PROTOCOL_VERSION, SUPPORTED_PROTOCOL_VERSIONS, RequestParams, Result
from location_mcp.types.common import ClientCapabilities, Implementation, ServerCapabilities
from location_mcp.types.content import TextContent, TextResourceContents
from location_mcp.types.initialize import InitializeRequestParams, InitializeResult
from location_mcp.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    RESOURCE_NOT_FOUND,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    RequestId,
    parse_message,
    parse_payload,
    to_wire,
)
from location_mcp.types.location import ApiKey, ApiKeyWithSecret, Location, LocationUpdate
from location_mcp.types.resources import ListResourcesResult, ReadResourceRequestParams, ReadResourceResult, Resource
from location_mcp.types.tools import CallToolRequestParams, CallToolResult, ListToolsResult, Tool

__all__ = [
    "LATEST_PROTOCOL_VERSION",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "RESOURCE_NOT_FOUND",
    "ApiKey",
    "ApiKeyWithSecret",
    "CallToolRequestParams",
    "CallToolResult",
    "ClientCapabilities",
    "ErrorData",
    "Implementation",
    "InitializeRequestParams",
    "InitializeResult",
    "JSONRPCErrorResponse",
    "JSONRPCMessage",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCResultResponse",
    "ListResourcesResult",
    "ListToolsResult",
    "Location",
    "LocationUpdate",
    "ReadResourceRequestParams",
    "ReadResourceResult",
    "RequestId",
    "RequestParams",
    "Resource",
    "Result",
    "ServerCapabilities",
    "TextContent",
    "TextResourceContents",
    "Tool",
    "parse_message",
    "parse_payload",
    "to_wire",
]
