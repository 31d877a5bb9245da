"""HTTP transport - bridges single HTTP exchanges to one MCP server instance.

Framework-agnostic: takes a ``TransportRequest`` and returns a
``TransportResponse`` that is either a JSON body or an ordered stream of
events. The Starlette layer renders it, the session manager decides which
transport a request reaches.

Two entry points:

- ``handle_unary`` (POST): dispatch JSON-RPC messages and answer with JSON,
  upgrading to an event stream only when a handler emits intermediate messages
  and the client accepts ``text/event-stream``.
- ``handle_stream`` (GET): open the standalone event stream on which
  server-initiated messages are forwarded until the transport is terminated,
  the stream idles out, or the client goes away.
"""

from __future__ import annotations

import functools
import json
import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import ValidationError

from location_mcp.exceptions import Conflict, InternalError, InvalidMessage, SessionNotFound
from location_mcp.server.lowlevel import LowLevelServer
from location_mcp.types.json_rpc import (
    INVALID_REQUEST,
    PARSE_ERROR,
    JSONRPCMessage,
    JSONRPCRequest,
    JSONRPCResponse,
    parse_payload,
    to_wire,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"
MCP_PROTOCOL_VERSION_HEADER = "mcp-protocol-version"
EVENT_STREAM = "text/event-stream"

DEFAULT_STREAM_BUFFER_SIZE = 32

STREAM_HEADERS = {
    "Content-Type": EVENT_STREAM,
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


@dataclass
class TransportRequest:
    """The parts of an HTTP request the transport needs. Header names are case-insensitive."""

    method: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def accepts_event_stream(self) -> bool:
        return EVENT_STREAM in (self.header("accept") or "")


@dataclass
class SinkEvent:
    """An outbound message produced while serving a request."""

    message: JSONRPCMessage
    is_final: bool = False

    def to_json(self) -> str:
        return json.dumps(to_wire(self.message), separators=(",", ":"))


@dataclass
class TransportResponse:
    """What to send back: a JSON body (possibly empty) or an event stream, never both."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Any | None = None
    events: EventStream | None = None

    @property
    def is_stream(self) -> bool:
        return self.events is not None


class ChannelSink:
    """ResponseSink that writes events to a memory channel.

    A client that disconnects closes the receiving end; the sink then goes
    quiet so the handler can finish and release the dispatch lock.
    """

    def __init__(self, send_stream: MemoryObjectSendStream[SinkEvent]) -> None:
        self._send = send_stream
        self._closed = False

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        await self._emit(SinkEvent(message=message))

    async def send_result(self, response: JSONRPCResponse) -> None:
        await self._emit(SinkEvent(message=response, is_final=True))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._send.close()

    async def _emit(self, event: SinkEvent) -> None:
        if self._closed:
            return
        try:
            await self._send.send(event)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Receiver went away, dropping %s", type(event.message).__name__)
            self._closed = True


class _NoOpSink:
    """A sink that does nothing. Used for notifications which don't produce responses."""

    async def send_intermediate(self, message: JSONRPCMessage) -> None:
        pass

    async def send_result(self, response: JSONRPCResponse) -> None:
        pass

    async def close(self) -> None:
        pass


class EventStream:
    """Ordered events read from one memory channel.

    ``aclose()`` releases the channel whether or not iteration ever started,
    so a response discarded before its first chunk still unregisters itself.

    Args:
        receive_stream: Channel the events arrive on
        buffered: Events already taken off the channel, yielded first
        pending: Final responses still expected; None reads until the channel ends
        idle_timeout: Seconds to wait for the next event before ending the stream
        on_close: Called once when the stream is closed
    """

    def __init__(
        self,
        receive_stream: MemoryObjectReceiveStream[SinkEvent],
        *,
        buffered: Iterable[SinkEvent] = (),
        pending: int | None = None,
        idle_timeout: float | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._receive = receive_stream
        self._buffered = deque(buffered)
        self._pending = pending
        self._idle_timeout = idle_timeout
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> SinkEvent:
        if self._buffered:
            return self._buffered.popleft()
        if self._closed or self._pending == 0:
            await self.aclose()
            raise StopAsyncIteration

        try:
            if self._idle_timeout is None:
                event = await self._receive.receive()
            else:
                with anyio.move_on_after(self._idle_timeout) as idle_scope:
                    event = await self._receive.receive()
                if idle_scope.cancelled_caught:
                    logger.info("Event stream idle for %ss, closing", self._idle_timeout)
                    await self.aclose()
                    raise StopAsyncIteration
        except anyio.EndOfStream:
            if self._pending:
                logger.warning("Handler finished with %d response(s) outstanding", self._pending)
            await self.aclose()
            raise StopAsyncIteration from None
        except anyio.ClosedResourceError:
            raise StopAsyncIteration from None

        if self._pending is not None and event.is_final:
            self._pending -= 1
        return event

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffered.clear()
        self._receive.close()
        if self._on_close is not None:
            self._on_close()


class HTTPTransport:
    """Transport for one MCP server instance.

    Dispatch is serialized: at most one POST is being handled by the server at
    a time, later ones queue on the dispatch lock in arrival order.

    Args:
        server: The server instance this transport feeds
        task_group: Task group that runs handler tasks
        session_id: Session identifier echoed in ``mcp-session-id``; None in stateless mode
        json_response: Never upgrade POST replies to event streams
        idle_timeout: Seconds the GET stream may stay silent before it is closed
    """

    def __init__(
        self,
        server: LowLevelServer,
        *,
        task_group: TaskGroup,
        session_id: str | None = None,
        json_response: bool = False,
        idle_timeout: float = 300.0,
        stream_buffer_size: int = DEFAULT_STREAM_BUFFER_SIZE,
    ) -> None:
        self.server = server
        self.session_id = session_id
        self.json_response = json_response
        self.idle_timeout = idle_timeout
        self._task_group = task_group
        self._buffer_size = stream_buffer_size
        self._dispatch_lock = anyio.Lock()
        self._standalone: MemoryObjectSendStream[SinkEvent] | None = None
        self._terminated = False

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    @property
    def has_event_stream(self) -> bool:
        return self._standalone is not None

    async def handle_unary(self, request: TransportRequest) -> TransportResponse:
        """Handle a POST carrying one JSON-RPC message or a batch."""
        self.check_session(request)
        messages, is_batch = self._parse_body(request.body)

        if not any(isinstance(m, JSONRPCRequest) for m in messages):
            # Notifications and responses only: process, then acknowledge.
            async with self._dispatch_lock:
                sink = _NoOpSink()
                for message in messages:
                    await self.server.handle_message(sink, message)
            return TransportResponse(status_code=202, headers=self._base_headers())

        pending = sum(1 for m in messages if isinstance(m, JSONRPCRequest))
        wants_stream = not self.json_response and request.accepts_event_stream

        send_stream, receive_stream = anyio.create_memory_object_stream[SinkEvent](self._buffer_size)
        self._task_group.start_soon(self._run_dispatch, send_stream, messages)

        received: list[SinkEvent] = []
        streaming = False
        try:
            while pending:
                try:
                    event = await receive_stream.receive()
                except anyio.EndOfStream:
                    raise InternalError("Handler finished without producing a response") from None

                if event.is_final:
                    pending -= 1
                    received.append(event)
                elif wants_stream:
                    received.append(event)
                    streaming = True
                    logger.debug("Upgrading reply to an event stream")
                    return TransportResponse(
                        status_code=200,
                        headers=self._base_headers() | STREAM_HEADERS,
                        events=EventStream(receive_stream, buffered=received, pending=pending),
                    )
                else:
                    logger.debug("Client does not accept event streams, dropping intermediate message")
        finally:
            if not streaming:
                receive_stream.close()

        responses = [to_wire(event.message) for event in received]
        return TransportResponse(
            status_code=200,
            headers=self._base_headers() | {"Content-Type": "application/json"},
            body=responses if is_batch else responses[0],
        )

    async def handle_stream(self, request: TransportRequest) -> TransportResponse:
        """Open the standalone event stream for server-initiated messages."""
        self.check_session(request)
        if self._standalone is not None:
            raise Conflict("Only one event stream is allowed per session")

        send_stream, receive_stream = anyio.create_memory_object_stream[SinkEvent](self._buffer_size)
        self._standalone = send_stream
        logger.debug("Opened event stream for session %s", self.session_id)
        return TransportResponse(
            status_code=200,
            headers=self._base_headers() | STREAM_HEADERS,
            events=EventStream(
                receive_stream,
                idle_timeout=self.idle_timeout,
                on_close=functools.partial(self._release_standalone, send_stream),
            ),
        )

    def publish(self, message: JSONRPCMessage) -> bool:
        """Queue a server-initiated message on the open event stream.

        Returns False when no stream is open or its buffer is full.
        """
        stream = self._standalone
        if stream is None:
            return False
        try:
            stream.send_nowait(SinkEvent(message=message))
        except anyio.WouldBlock:
            logger.warning("Event stream for session %s is full, dropping message", self.session_id)
            return False
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self._standalone = None
            return False
        return True

    def terminate(self) -> None:
        """Close the event stream and refuse further requests."""
        if self._terminated:
            return
        self._terminated = True
        if self._standalone is not None:
            self._standalone.close()
            self._standalone = None
        logger.debug("Terminated transport for session %s", self.session_id)

    def _release_standalone(self, send_stream: MemoryObjectSendStream[SinkEvent]) -> None:
        if self._standalone is send_stream:
            self._standalone = None
        send_stream.close()
        logger.debug("Event stream for session %s closed", self.session_id)

    async def _run_dispatch(
        self,
        send_stream: MemoryObjectSendStream[SinkEvent],
        messages: list[JSONRPCMessage],
    ) -> None:
        sink = ChannelSink(send_stream)
        try:
            async with self._dispatch_lock:
                for message in messages:
                    await self.server.handle_message(sink, message)
        except Exception:
            logger.exception("Dispatch failed for session %s", self.session_id)
        finally:
            await sink.close()

    def check_session(self, request: TransportRequest) -> None:
        if self._terminated:
            raise SessionNotFound("Session has been terminated")
        if self.session_id is None:
            return
        presented = request.header(MCP_SESSION_ID_HEADER)
        if presented is not None and presented != self.session_id:
            raise SessionNotFound(f"Unknown session id: {presented}")

    def _parse_body(self, body: bytes) -> tuple[list[JSONRPCMessage], bool]:
        try:
            raw = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidMessage(PARSE_ERROR, f"Parse error: {e}") from e
        try:
            return parse_payload(raw)
        except (ValueError, ValidationError) as e:
            raise InvalidMessage(INVALID_REQUEST, f"Invalid JSON-RPC message: {e}") from e

    def _base_headers(self) -> dict[str, str]:
        if self.session_id is None:
            return {}
        return {MCP_SESSION_ID_HEADER: self.session_id}
