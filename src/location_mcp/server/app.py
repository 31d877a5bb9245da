"""Starlette application exposing the MCP endpoint and the plain location API."""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from location_mcp import __version__
from location_mcp.exceptions import BadRequest, LocationMCPError, NotFound
from location_mcp.server.auth import RequestAuthenticator
from location_mcp.server.capabilities import CapabilitySet
from location_mcp.server.http_body import read_request_body
from location_mcp.server.manager import MCPSessionManager
from location_mcp.server.transport import EventStream, TransportRequest, TransportResponse
from location_mcp.settings import Settings
from location_mcp.stores import ApiKeyValidator, InMemoryApiKeyStore, InMemoryLocationStore, LocationStore
from location_mcp.types.location import LocationUpdate

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS, DELETE",
    "Access-Control-Allow-Headers": (
        "Content-Type, X-API-Key, Authorization, Mcp-Session-Id, Mcp-Protocol-Version, Accept, Last-Event-ID"
    ),
    "Access-Control-Expose-Headers": "Mcp-Session-Id",
}

Endpoint = Callable[[Request], Awaitable[Response]]


def error_response(exc: LocationMCPError) -> JSONResponse:
    return JSONResponse(exc.to_body(), status_code=exc.status_code, headers=CORS_HEADERS)


def internal_error_response(exc: Exception, *, include_detail: bool) -> JSONResponse:
    """Generic 500; the exception text is only included when ``include_detail`` is set."""
    body: dict[str, Any] = {"error": "Internal server error"}
    if include_detail:
        body["message"] = str(exc)
    return JSONResponse(body, status_code=500, headers=CORS_HEADERS)


def guarded(endpoint: Endpoint, *, include_detail: bool) -> Endpoint:
    """Render ``LocationMCPError`` as ``{error, message}`` and anything else as a 500."""

    async def wrapper(request: Request) -> Response:
        try:
            return await endpoint(request)
        except LocationMCPError as e:
            return error_response(e)
        except Exception as e:
            logger.exception("Error handling %s %s", request.method, request.url.path)
            return internal_error_response(e, include_detail=include_detail)

    return wrapper


async def _sse_events(events: EventStream) -> AsyncIterator[dict[str, str]]:
    # Status and headers are already on the wire here, so failures only end the stream.
    async with contextlib.aclosing(events) as stream:
        try:
            async for event in stream:
                yield {"event": "message", "data": event.to_json()}
        except Exception:
            logger.exception("Event stream failed, closing it")


class TransportEventSourceResponse(EventSourceResponse):
    """EventSourceResponse that releases the transport's channel however the exchange ends."""

    def __init__(self, events: EventStream, **kwargs: Any):
        super().__init__(_sse_events(events), **kwargs)
        self.transport_events = events

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.transport_events.aclose()


def render(result: TransportResponse, *, ping_interval: int) -> Response:
    headers = result.headers | CORS_HEADERS
    if result.events is not None:
        return TransportEventSourceResponse(
            result.events,
            status_code=result.status_code,
            headers=headers,
            ping=ping_interval,
        )
    if result.body is None:
        return Response(status_code=result.status_code, headers=headers)
    return JSONResponse(result.body, status_code=result.status_code, headers=headers)


def create_app(
    settings: Settings | None = None,
    *,
    locations: LocationStore | None = None,
    api_keys: ApiKeyValidator | None = None,
) -> Starlette:
    """Build the ASGI application.

    The session manager is on ``app.state.session_manager``; the app lifespan
    runs it. Callers that skip the lifespan (e.g. httpx's ASGITransport) must
    enter ``app.state.session_manager.run()`` themselves.
    """
    settings = settings or Settings()
    locations = locations or InMemoryLocationStore()
    api_keys = api_keys or InMemoryApiKeyStore(settings.api_keys)
    authenticator = RequestAuthenticator(api_keys)

    session_manager = MCPSessionManager(
        lambda identity: CapabilitySet(identity, locations),
        stateless=settings.stateless_http,
        json_response=settings.json_response,
        stream_idle_timeout=settings.stream_idle_timeout,
    )
    include_detail = settings.stateless_http

    async def handle_mcp(request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        identity = await authenticator.authenticate(request.headers, request.query_params)
        logger.debug("[MCP] %s request for user %s", request.method, identity)

        body = b""
        if request.method == "POST":
            body = await read_request_body(request, max_body_bytes=settings.max_body_bytes)
        transport_request = TransportRequest(method=request.method, headers=dict(request.headers), body=body)

        if request.method == "POST":
            result = await session_manager.handle_post(identity, transport_request)
        elif request.method == "GET":
            result = await session_manager.handle_get(identity, transport_request)
        else:
            result = await session_manager.handle_delete(identity, transport_request)
        return render(result, ping_interval=settings.sse_ping_interval)

    async def get_location(request: Request) -> Response:
        identity = await authenticator.authenticate(request.headers, request.query_params)
        location = await locations.get_location(identity)
        if location is None:
            raise NotFound("No location data available")
        return JSONResponse(location.to_json(), headers=CORS_HEADERS)

    async def update_location(request: Request) -> Response:
        identity = await authenticator.authenticate(request.headers, request.query_params)
        body = await read_request_body(request, max_body_bytes=settings.max_body_bytes)
        try:
            raw = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BadRequest("Invalid JSON body") from e
        try:
            update = LocationUpdate.model_validate(raw)
        except ValidationError as e:
            raise BadRequest("latitude and longitude are required") from e
        if not -90 <= update.latitude <= 90:
            raise BadRequest("Latitude must be between -90 and 90")
        if not -180 <= update.longitude <= 180:
            raise BadRequest("Longitude must be between -180 and 180")

        location = await locations.set_location(identity, update.latitude, update.longitude)
        logger.info("[API] Location updated for user %s", identity)
        session_manager.notify_location_changed(identity)
        return JSONResponse({"success": True, "location": location.to_json()}, headers=CORS_HEADERS)

    async def health(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "version": __version__})

    mcp_methods = ["GET", "POST", "DELETE"]
    if settings.stateless_http:
        mcp_methods.append("OPTIONS")

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            yield

    app = Starlette(
        debug=settings.debug,
        routes=[
            Route(settings.mcp_path, guarded(handle_mcp, include_detail=include_detail), methods=mcp_methods),
            Route(
                settings.location_path,
                guarded(get_location, include_detail=include_detail),
                methods=["GET"],
            ),
            Route(
                settings.location_path,
                guarded(update_location, include_detail=include_detail),
                methods=["POST"],
            ),
            Route("/health", health, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_manager = session_manager
    app.state.locations = locations
    app.state.api_keys = api_keys
    return app
