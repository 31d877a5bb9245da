"""Session manager - decides which server and transport serve a request."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup

from location_mcp.exceptions import MethodNotAllowed, NotFound
from location_mcp.server.capabilities import MY_LOCATION_URI, CapabilitySet
from location_mcp.server.session import EvictionPolicy, Session, SessionStore
from location_mcp.server.transport import HTTPTransport, TransportRequest, TransportResponse
from location_mcp.types.json_rpc import JSONRPCNotification

logger = logging.getLogger(__name__)

CapabilityFactory = Callable[[str], CapabilitySet]


class MCPSessionManager:
    """
    Binds authenticated identities to MCP server instances.

    Two designs, chosen once per manager and never mixed:

    1. Stateless (default): every request gets a fresh server and transport
       that are discarded once the response is complete. Suited to hosts that
       cannot route two requests of one client to the same process.
    2. Stateful: one session per identity held in a process-wide
       ``SessionStore``, so a GET event stream and later POST calls share the
       same server instance.

    Important: the instance cannot be reused after its run() context has
    completed. If you need to restart the manager, create a new instance.

    Args:
        capability_factory: Builds the identity-bound capability set for a user id
        stateless: Select the stateless design
        json_response: Never upgrade POST replies to event streams
        stream_idle_timeout: Seconds a GET stream may stay silent
        eviction_policy: Session eviction for the stateful design
    """

    def __init__(
        self,
        capability_factory: CapabilityFactory,
        *,
        stateless: bool = True,
        json_response: bool = False,
        stream_idle_timeout: float = 300.0,
        eviction_policy: EvictionPolicy | None = None,
    ):
        self.capability_factory = capability_factory
        self.stateless = stateless
        self.json_response = json_response
        self.stream_idle_timeout = stream_idle_timeout
        self.sessions = SessionStore(eviction_policy)

        # The task group will be set during lifespan
        self._task_group: TaskGroup | None = None
        self._has_started = False

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the session manager with proper lifecycle management.

        Use this in the lifespan context manager of your Starlette app:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield
        """
        if self._has_started:
            raise RuntimeError(
                "MCPSessionManager .run() can only be called once per instance. "
                "Create a new instance if you need to run again."
            )
        self._has_started = True

        if not self.stateless:
            logger.warning(
                "Stateful sessions use eviction policy '%s'; one session is retained per identity",
                self.sessions.eviction_policy.name,
            )

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("MCP session manager started (%s)", "stateless" if self.stateless else "stateful")
            try:
                yield
            finally:
                logger.info("MCP session manager shutting down")
                tg.cancel_scope.cancel()
                self._task_group = None
                for session in self.sessions.values():
                    session.transport.terminate()
                self.sessions.clear()

    async def handle_post(self, identity: str, request: TransportRequest) -> TransportResponse:
        if self.stateless:
            transport = self._new_transport(identity, session_id=None)
            try:
                return await transport.handle_unary(request)
            finally:
                transport.terminate()

        session = await self.get_or_create_session(identity)
        return await session.transport.handle_unary(request)

    async def handle_get(self, identity: str, request: TransportRequest) -> TransportResponse:
        if self.stateless:
            raise MethodNotAllowed("Event streams are not available in stateless mode")

        session = await self.get_or_create_session(identity)
        return await session.transport.handle_stream(request)

    async def handle_delete(self, identity: str, request: TransportRequest) -> TransportResponse:
        if self.stateless:
            raise MethodNotAllowed("There is no session to terminate in stateless mode")

        session = self.sessions.get(identity)
        if session is None:
            raise NotFound("No active session")
        # Validates the presented session id before anything is torn down
        session.transport.check_session(request)
        self.sessions.remove(identity)
        session.transport.terminate()
        logger.info("Terminated session %s for user %s", session.session_id, identity)
        return TransportResponse(status_code=200)

    async def get_or_create_session(self, identity: str) -> Session:
        return await self.sessions.get_or_create(identity, self._create_session)

    def notify_location_changed(self, identity: str) -> bool:
        """Tell a live session's event stream that ``location://me`` changed."""
        session = self.sessions.get(identity)
        if session is None:
            return False
        notification = JSONRPCNotification(
            method="notifications/resources/updated",
            params={"uri": MY_LOCATION_URI},
        )
        return session.transport.publish(notification)

    async def _create_session(self, identity: str) -> Session:
        transport = self._new_transport(identity, session_id=uuid4().hex)
        return Session(identity=identity, server=transport.server, transport=transport)

    def _new_transport(self, identity: str, *, session_id: str | None) -> HTTPTransport:
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")

        server = self.capability_factory(identity).build_server()
        return HTTPTransport(
            server,
            task_group=self._task_group,
            session_id=session_id,
            json_response=self.json_response,
            idle_timeout=self.stream_idle_timeout,
        )
