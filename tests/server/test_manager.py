"""Tests for MCPSessionManager in both session designs."""

import json
from collections.abc import AsyncIterator

import anyio
import pytest

from location_mcp.exceptions import MethodNotAllowed, NotFound, SessionNotFound
from location_mcp.server.capabilities import CapabilitySet
from location_mcp.server.manager import MCPSessionManager
from location_mcp.server.transport import MCP_SESSION_ID_HEADER, TransportRequest
from location_mcp.stores import InMemoryLocationStore

pytestmark = pytest.mark.anyio

PING = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"}).encode()


def _factory(locations: InMemoryLocationStore, built: list[str] | None = None):
    def build(identity: str) -> CapabilitySet:
        if built is not None:
            built.append(identity)
        return CapabilitySet(identity, locations)

    return build


def _post(body: bytes = PING, headers: dict[str, str] | None = None) -> TransportRequest:
    return TransportRequest(method="POST", headers=headers or {"accept": "application/json"}, body=body)


@pytest.fixture
async def stateful_manager(locations: InMemoryLocationStore) -> AsyncIterator[MCPSessionManager]:
    manager = MCPSessionManager(_factory(locations), stateless=False)
    async with manager.run():
        yield manager


async def test_run_can_only_be_called_once(locations: InMemoryLocationStore):
    manager = MCPSessionManager(_factory(locations))

    async with manager.run():
        pass

    with pytest.raises(RuntimeError) as excinfo:
        async with manager.run():
            pass
    assert "MCPSessionManager .run() can only be called once per instance" in str(excinfo.value)


async def test_handle_requires_run(locations: InMemoryLocationStore):
    manager = MCPSessionManager(_factory(locations))
    with pytest.raises(RuntimeError, match="Task group is not initialized"):
        await manager.handle_post("user-a", _post())


async def test_stateless_builds_fresh_server_per_request(locations: InMemoryLocationStore):
    built: list[str] = []
    manager = MCPSessionManager(_factory(locations, built))
    async with manager.run():
        first = await manager.handle_post("user-a", _post())
        second = await manager.handle_post("user-a", _post())

    assert built == ["user-a", "user-a"]
    assert len(manager.sessions) == 0
    assert MCP_SESSION_ID_HEADER not in first.headers
    assert first.body == second.body == {"jsonrpc": "2.0", "id": 1, "result": {}}


async def test_stateless_refuses_get_and_delete(locations: InMemoryLocationStore):
    manager = MCPSessionManager(_factory(locations))
    async with manager.run():
        with pytest.raises(MethodNotAllowed):
            await manager.handle_get("user-a", TransportRequest(method="GET"))
        with pytest.raises(MethodNotAllowed):
            await manager.handle_delete("user-a", TransportRequest(method="DELETE"))
        assert manager.notify_location_changed("user-a") is False


async def test_stateful_reuses_session_per_identity(stateful_manager: MCPSessionManager):
    first = await stateful_manager.handle_post("user-a", _post())
    second = await stateful_manager.handle_post("user-a", _post())
    other = await stateful_manager.handle_post("user-b", _post())

    session_id = first.headers[MCP_SESSION_ID_HEADER]
    assert second.headers[MCP_SESSION_ID_HEADER] == session_id
    assert other.headers[MCP_SESSION_ID_HEADER] != session_id
    assert len(stateful_manager.sessions) == 2


async def test_concurrent_first_requests_create_one_session(locations: InMemoryLocationStore):
    built: list[str] = []
    manager = MCPSessionManager(_factory(locations, built), stateless=False)
    session_ids: set[str] = set()

    async def call() -> None:
        response = await manager.handle_post("user-a", _post())
        session_ids.add(response.headers[MCP_SESSION_ID_HEADER])

    async with manager.run():
        async with anyio.create_task_group() as tg:
            for _ in range(5):
                tg.start_soon(call)

    assert built == ["user-a"]
    assert len(session_ids) == 1


async def test_stateful_rejects_unknown_session_id(stateful_manager: MCPSessionManager):
    await stateful_manager.handle_post("user-a", _post())
    with pytest.raises(SessionNotFound):
        await stateful_manager.handle_post("user-a", _post(headers={"mcp-session-id": "not-mine"}))


async def test_location_change_reaches_event_stream(stateful_manager: MCPSessionManager):
    assert stateful_manager.notify_location_changed("user-a") is False

    response = await stateful_manager.handle_get("user-a", TransportRequest(method="GET"))
    assert response.events is not None
    assert stateful_manager.notify_location_changed("user-a") is True

    event = await response.events.__anext__()
    assert event.to_json() == (
        '{"jsonrpc":"2.0","method":"notifications/resources/updated","params":{"uri":"location://me"}}'
    )
    await response.events.aclose()


async def test_delete_terminates_session(stateful_manager: MCPSessionManager):
    with pytest.raises(NotFound):
        await stateful_manager.handle_delete("user-a", TransportRequest(method="DELETE"))

    first = await stateful_manager.handle_post("user-a", _post())
    session_id = first.headers[MCP_SESSION_ID_HEADER]
    session = stateful_manager.sessions.get("user-a")
    assert session is not None

    with pytest.raises(SessionNotFound):
        await stateful_manager.handle_delete(
            "user-a", TransportRequest(method="DELETE", headers={"mcp-session-id": "x"})
        )

    response = await stateful_manager.handle_delete(
        "user-a", TransportRequest(method="DELETE", headers={"mcp-session-id": session_id})
    )
    assert response.status_code == 200
    assert "user-a" not in stateful_manager.sessions
    assert session.transport.is_terminated

    # The next request starts a new session
    again = await stateful_manager.handle_post("user-a", _post())
    assert again.headers[MCP_SESSION_ID_HEADER] != session_id


async def test_shutdown_terminates_sessions(locations: InMemoryLocationStore):
    manager = MCPSessionManager(_factory(locations), stateless=False)
    async with manager.run():
        await manager.handle_post("user-a", _post())
        session = manager.sessions.get("user-a")

    assert session is not None
    assert session.transport.is_terminated
    assert len(manager.sessions) == 0
