"""Tests for HTTPTransport, driven directly without Starlette."""

import json
from collections.abc import AsyncIterator
from typing import Any

import anyio
import pytest
from anyio.abc import TaskGroup

from location_mcp.exceptions import Conflict, InvalidMessage, SessionNotFound
from location_mcp.server.lowlevel import LowLevelServer, RequestContext
from location_mcp.server.transport import MCP_SESSION_ID_HEADER, HTTPTransport, SinkEvent, TransportRequest
from location_mcp.types.json_rpc import INVALID_REQUEST, PARSE_ERROR, JSONRPCNotification, JSONRPCResultResponse

pytestmark = pytest.mark.anyio

ACCEPT_BOTH = {"accept": "application/json, text/event-stream"}
ECHO_WITH_PROGRESS = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "echo",
    "params": {"text": "hi", "_meta": {"progressToken": "p"}},
}


def _make_server(log: list[str] | None = None) -> LowLevelServer:
    server = LowLevelServer(name="test-server", version="0.1.0")

    @server.request_handler("echo")
    async def echo(ctx: RequestContext) -> dict[str, Any]:
        await ctx.report_progress(0.5, 1)
        return {"echo": ctx.params.get("text")}

    @server.request_handler("slow")
    async def slow(ctx: RequestContext) -> dict[str, Any]:
        assert log is not None
        log.append(f"start-{ctx.request_id}")
        await anyio.sleep(0.05)
        log.append(f"end-{ctx.request_id}")
        return {}

    return server


@pytest.fixture
async def task_group() -> AsyncIterator[TaskGroup]:
    async with anyio.create_task_group() as tg:
        yield tg
        tg.cancel_scope.cancel()


def _post(payload: Any, headers: dict[str, str] | None = None) -> TransportRequest:
    return TransportRequest(method="POST", headers=headers or ACCEPT_BOTH, body=json.dumps(payload).encode())


async def _drain(events: AsyncIterator[SinkEvent]) -> list[SinkEvent]:
    return [event async for event in events]


async def test_request_gets_json_reply(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    response = await transport.handle_unary(
        _post({"jsonrpc": "2.0", "id": 1, "method": "echo", "params": {"text": "hi"}})
    )

    assert response.status_code == 200
    assert not response.is_stream
    assert response.headers["Content-Type"] == "application/json"
    assert MCP_SESSION_ID_HEADER not in response.headers
    assert response.body == {"jsonrpc": "2.0", "id": 1, "result": {"echo": "hi"}}


async def test_request_without_envelope_is_answered_with_null_id(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    response = await transport.handle_unary(_post({"method": "ping", "params": {}}))
    assert response.body == {"jsonrpc": "2.0", "id": None, "result": {}}


async def test_notifications_only_are_accepted(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    response = await transport.handle_unary(_post({"jsonrpc": "2.0", "method": "notifications/initialized"}))
    assert response.status_code == 202
    assert response.body is None
    assert not response.is_stream


async def test_batch_replies_in_order(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    response = await transport.handle_unary(
        _post(
            [
                {"jsonrpc": "2.0", "id": "a", "method": "echo", "params": {"text": "one"}},
                {"jsonrpc": "2.0", "method": "notifications/initialized"},
                {"jsonrpc": "2.0", "id": "b", "method": "missing"},
            ]
        )
    )
    assert isinstance(response.body, list)
    assert [r["id"] for r in response.body] == ["a", "b"]
    assert response.body[0]["result"] == {"echo": "one"}
    assert response.body[1]["error"]["code"] == -32601


async def test_progress_upgrades_reply_to_event_stream(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    request = _post(ECHO_WITH_PROGRESS)
    response = await transport.handle_unary(request)

    assert response.is_stream
    assert response.headers["Content-Type"] == "text/event-stream"
    assert response.events is not None
    events = await _drain(response.events)
    assert [e.is_final for e in events] == [False, True]
    assert isinstance(events[0].message, JSONRPCNotification)
    assert events[0].message.method == "notifications/progress"
    assert isinstance(events[1].message, JSONRPCResultResponse)
    assert json.loads(events[1].to_json()) == {"jsonrpc": "2.0", "id": 1, "result": {"echo": "hi"}}


@pytest.mark.parametrize(
    ("json_response", "headers"),
    [(True, ACCEPT_BOTH), (False, {"accept": "application/json"})],
)
async def test_progress_dropped_when_stream_not_possible(task_group: TaskGroup, json_response: bool, headers):
    transport = HTTPTransport(_make_server(), task_group=task_group, json_response=json_response)
    request = _post(ECHO_WITH_PROGRESS, headers)
    response = await transport.handle_unary(request)
    assert not response.is_stream
    assert response.body == {"jsonrpc": "2.0", "id": 1, "result": {"echo": "hi"}}


async def test_dispatch_is_serialized(task_group: TaskGroup):
    log: list[str] = []
    transport = HTTPTransport(_make_server(log), task_group=task_group)

    async def call(request_id: int) -> None:
        await transport.handle_unary(_post({"jsonrpc": "2.0", "id": request_id, "method": "slow"}))

    async with anyio.create_task_group() as tg:
        tg.start_soon(call, 1)
        await anyio.sleep(0.01)
        tg.start_soon(call, 2)

    assert log == ["start-1", "end-1", "start-2", "end-2"]


@pytest.mark.parametrize(
    ("body", "code"),
    [(b"{not json", PARSE_ERROR), (b"[]", INVALID_REQUEST), (b'"ping"', INVALID_REQUEST)],
)
async def test_malformed_body_is_invalid_message(task_group: TaskGroup, body: bytes, code: int):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    with pytest.raises(InvalidMessage) as exc_info:
        await transport.handle_unary(TransportRequest(method="POST", headers=ACCEPT_BOTH, body=body))
    assert exc_info.value.status_code == 400
    error = exc_info.value.to_body()
    assert error["jsonrpc"] == "2.0"
    assert error["id"] is None
    assert error["error"]["code"] == code


async def test_session_id_is_echoed_and_checked(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc")
    response = await transport.handle_unary(_post({"jsonrpc": "2.0", "id": 1, "method": "ping"}))
    assert response.headers[MCP_SESSION_ID_HEADER] == "abc"

    matching = _post({"jsonrpc": "2.0", "id": 2, "method": "ping"}, ACCEPT_BOTH | {"Mcp-Session-Id": "abc"})
    assert (await transport.handle_unary(matching)).status_code == 200

    with pytest.raises(SessionNotFound):
        await transport.handle_unary(_post({"jsonrpc": "2.0", "id": 3, "method": "ping"}, {"mcp-session-id": "other"}))


async def test_event_stream_forwards_published_messages(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc")
    assert transport.publish(JSONRPCNotification(method="notifications/resources/updated")) is False

    response = await transport.handle_stream(TransportRequest(method="GET"))
    assert response.headers["Content-Type"] == "text/event-stream"
    assert response.headers[MCP_SESSION_ID_HEADER] == "abc"
    assert transport.has_event_stream
    assert response.events is not None

    notification = JSONRPCNotification(method="notifications/resources/updated", params={"uri": "location://me"})
    assert transport.publish(notification) is True
    event = await response.events.__anext__()
    assert event.message == notification

    await response.events.aclose()
    assert not transport.has_event_stream


async def test_second_event_stream_conflicts(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc")
    response = await transport.handle_stream(TransportRequest(method="GET"))
    with pytest.raises(Conflict):
        await transport.handle_stream(TransportRequest(method="GET"))

    assert response.events is not None
    await response.events.aclose()
    second = await transport.handle_stream(TransportRequest(method="GET"))
    assert second.is_stream
    assert second.events is not None
    await second.events.aclose()


async def test_event_stream_closes_when_idle(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc", idle_timeout=0.05)
    response = await transport.handle_stream(TransportRequest(method="GET"))
    assert response.events is not None
    with anyio.fail_after(1):
        assert await _drain(response.events) == []
    assert not transport.has_event_stream


async def test_full_event_stream_drops_messages(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc", stream_buffer_size=1)
    response = await transport.handle_stream(TransportRequest(method="GET"))
    assert transport.publish(JSONRPCNotification(method="notifications/a")) is True
    assert transport.publish(JSONRPCNotification(method="notifications/b")) is False
    assert response.events is not None
    await response.events.aclose()


async def test_terminate_ends_stream_and_refuses_requests(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc")
    response = await transport.handle_stream(TransportRequest(method="GET"))
    assert response.events is not None

    transport.terminate()
    assert transport.is_terminated
    with anyio.fail_after(1):
        assert await _drain(response.events) == []

    with pytest.raises(SessionNotFound):
        await transport.handle_unary(_post({"jsonrpc": "2.0", "id": 1, "method": "ping"}))


async def test_aborted_reply_stream_releases_dispatch(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    request = _post(ECHO_WITH_PROGRESS)
    response = await transport.handle_unary(request)
    assert response.events is not None

    await response.events.__anext__()
    # Client goes away after the first event
    await response.events.aclose()

    with anyio.fail_after(1):
        followup = await transport.handle_unary(_post({"jsonrpc": "2.0", "id": 2, "method": "ping"}))
    assert followup.body == {"jsonrpc": "2.0", "id": 2, "result": {}}


async def test_event_stream_closed_before_first_event_is_released(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group, session_id="abc")
    response = await transport.handle_stream(TransportRequest(method="GET"))
    assert response.events is not None

    # Discarded before a single chunk was read
    await response.events.aclose()
    assert response.events.closed
    assert not transport.has_event_stream
    assert transport.publish(JSONRPCNotification(method="notifications/resources/updated")) is False

    second = await transport.handle_stream(TransportRequest(method="GET"))
    assert transport.has_event_stream
    assert second.events is not None
    await second.events.aclose()


async def test_reply_stream_closed_before_first_event_releases_channel(task_group: TaskGroup):
    transport = HTTPTransport(_make_server(), task_group=task_group)
    response = await transport.handle_unary(_post(ECHO_WITH_PROGRESS))
    assert response.events is not None

    await response.events.aclose()
    assert await _drain(response.events) == []

    with anyio.fail_after(1):
        followup = await transport.handle_unary(_post({"jsonrpc": "2.0", "id": 2, "method": "ping"}))
    assert followup.body == {"jsonrpc": "2.0", "id": 2, "result": {}}
