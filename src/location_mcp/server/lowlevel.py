"""LowLevelServer - handler registry and dispatch for one MCP server instance.

No I/O and no transport knowledge. The transport hands it one message at a time
together with a ``ResponseSink`` that receives whatever the handler emits.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from location_mcp.exceptions import McpError
from location_mcp.types.base import LATEST_PROTOCOL_VERSION, SUPPORTED_PROTOCOL_VERSIONS
from location_mcp.types.common import Implementation, ServerCapabilities
from location_mcp.types.initialize import InitializeRequestParams, InitializeResult
from location_mcp.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    RequestId,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ResponseSink(Protocol):
    """Transport-specific sink for outgoing messages while one request is processed."""

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        """Send a notification during processing."""
        ...

    async def send_result(self, response: JSONRPCResponse) -> None:
        """Send the final result. After this, the sink is done."""
        ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class SessionInfo:
    """Protocol-level state recorded by the initialize handshake."""

    client_info: Implementation | None
    protocol_version: str


@dataclass
class RequestContext:
    """What handlers receive."""

    request_id: RequestId | None
    params: dict[str, Any]
    _sink: ResponseSink

    @property
    def progress_token(self) -> str | int | None:
        meta = self.params.get("_meta") or {}
        return meta.get("progressToken")

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification to the client during request processing.

        Over HTTP this upgrades the reply to an event stream.
        """
        await self._sink.send_intermediate(JSONRPCNotification(method=method, params=params))

    async def report_progress(self, progress: float, total: float | None = None) -> None:
        """Emit ``notifications/progress`` if the client asked for progress on this request."""
        token = self.progress_token
        if token is None:
            return
        params: dict[str, Any] = {"progressToken": token, "progress": progress}
        if total is not None:
            params["total"] = total
        await self.send_notification("notifications/progress", params)


RequestHandler = Callable[[RequestContext], Awaitable[Any]]
NotificationHandler = Callable[[RequestContext], Awaitable[None]]


class LowLevelServer:
    """Pure handler registry + dispatch.

    Usage:
        server = LowLevelServer(name="my-server", version="1.0")

        @server.request_handler("tools/list")
        async def list_tools(ctx: RequestContext):
            return ListToolsResult(tools=[...])
    """

    def __init__(self, *, name: str, version: str, instructions: str | None = None) -> None:
        self.name = name
        self.version = version
        self.instructions = instructions
        self.session_info: SessionInfo | None = None
        self._request_handlers: dict[str, RequestHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
        }
        self._notification_handlers: dict[str, NotificationHandler] = {
            "notifications/initialized": self._handle_initialized,
        }

    def request_handler(self, method: str) -> Callable[[RequestHandler], RequestHandler]:
        """Decorator to register a request handler for a given method."""

        def decorator(fn: RequestHandler) -> RequestHandler:
            self._request_handlers[method] = fn
            return fn

        return decorator

    async def handle_message(self, sink: ResponseSink, message: JSONRPCMessage) -> None:
        """Dispatch one inbound message. Requests are answered through ``sink``."""
        if isinstance(message, JSONRPCRequest):
            ctx = RequestContext(request_id=message.id, params=message.params or {}, _sink=sink)
            response = await self.dispatch_request(ctx, message)
            await sink.send_result(response)
        elif isinstance(message, JSONRPCNotification):
            ctx = RequestContext(request_id=None, params=message.params or {}, _sink=sink)
            await self.dispatch_notification(ctx, message)
        else:
            # This server never issues requests to the client, so responses have nothing to match.
            logger.debug("Ignoring unsolicited response with id %s", message.id)

    async def dispatch_request(self, ctx: RequestContext, request: JSONRPCRequest) -> JSONRPCResponse:
        """Dispatch a request to the appropriate handler."""
        handler = self._request_handlers.get(request.method)
        if not handler:
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"),
            )
        try:
            result = await handler(ctx)
        except McpError as e:
            return JSONRPCErrorResponse(id=request.id, error=e.error)
        except ValidationError as e:
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(code=INVALID_PARAMS, message=f"Invalid params for {request.method}: {e}"),
            )
        except Exception:
            logger.exception("Handler error for %s", request.method)
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(code=INTERNAL_ERROR, message="Internal error"),
            )

        # Handler can return a BaseModel (serialized) or a raw dict
        if isinstance(result, BaseModel):
            result_data = result.model_dump(mode="json", by_alias=True, exclude_none=True)
        elif isinstance(result, dict):
            result_data = result
        else:
            result_data = {}
        return JSONRPCResultResponse(id=request.id, result=result_data)

    async def dispatch_notification(self, ctx: RequestContext, notification: JSONRPCNotification) -> None:
        """Dispatch a notification to the appropriate handler."""
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            logger.debug("No handler for notification %s", notification.method)
            return
        try:
            await handler(ctx)
        except Exception:
            logger.exception("Notification handler error for %s", notification.method)

    def get_capabilities(self) -> ServerCapabilities:
        """Derive capabilities from registered handlers."""
        caps = ServerCapabilities()
        if "tools/list" in self._request_handlers or "tools/call" in self._request_handlers:
            caps.tools = {"listChanged": False}
        if "resources/list" in self._request_handlers or "resources/read" in self._request_handlers:
            caps.resources = {"subscribe": False, "listChanged": False}
        return caps

    async def _handle_initialize(self, ctx: RequestContext) -> InitializeResult:
        params = InitializeRequestParams.model_validate(ctx.params)
        if params.protocol_version in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = params.protocol_version
        else:
            protocol_version = LATEST_PROTOCOL_VERSION

        self.session_info = SessionInfo(client_info=params.client_info, protocol_version=protocol_version)
        client_name = params.client_info.name if params.client_info else "unknown"
        logger.info("Initialized %s for client %s (protocol %s)", self.name, client_name, protocol_version)

        return InitializeResult(
            protocol_version=protocol_version,
            capabilities=self.get_capabilities(),
            server_info=Implementation(name=self.name, version=self.version),
            instructions=self.instructions,
        )

    async def _handle_ping(self, ctx: RequestContext) -> dict[str, Any]:
        return {}

    async def _handle_initialized(self, ctx: RequestContext) -> None:
        logger.debug("Client acknowledged initialization")
