"""Process-scoped session store for the stateful transport design."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import anyio

from location_mcp.server.lowlevel import LowLevelServer

if TYPE_CHECKING:
    from location_mcp.server.transport import HTTPTransport

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Binding between one authenticated identity and its live server and transport."""

    identity: str
    server: LowLevelServer
    transport: HTTPTransport

    @property
    def session_id(self) -> str | None:
        return self.transport.session_id


SessionFactory = Callable[[str], Awaitable[Session]]


class EvictionPolicy(Protocol):
    name: str

    def select_victims(self, sessions: dict[str, Session]) -> list[str]:
        """Return identities whose sessions should be dropped after an insert."""
        ...


class NoEvictionPolicy:
    """Keep every session until the process exits.

    Memory grows with one entry per distinct identity ever served. This is only
    acceptable where the hosting process is short-lived.
    """

    name = "no-eviction"

    def select_victims(self, sessions: dict[str, Session]) -> list[str]:
        return []


# TODO: ship an LRU-capped policy and an idle-timeout sweep so long-running processes stay bounded.


class SessionStore:
    """Identity -> Session map with a get-or-create primitive.

    The factory runs at most once per identity even when requests for a new
    identity race: creation happens under one lock and the map is re-checked
    inside it.
    """

    def __init__(self, eviction_policy: EvictionPolicy | None = None) -> None:
        self.eviction_policy: EvictionPolicy = eviction_policy or NoEvictionPolicy()
        self._sessions: dict[str, Session] = {}
        self._creation_lock = anyio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions

    def get(self, identity: str) -> Session | None:
        return self._sessions.get(identity)

    async def get_or_create(self, identity: str, factory: SessionFactory) -> Session:
        session = self._sessions.get(identity)
        if session is not None:
            return session

        async with self._creation_lock:
            # Double-check it wasn't created while we waited for the lock
            session = self._sessions.get(identity)
            if session is not None:
                return session

            session = await factory(identity)
            self._sessions[identity] = session
            logger.info("Created session %s for user %s", session.session_id, identity)

            for victim in self.eviction_policy.select_victims(self._sessions):
                evicted = self._sessions.pop(victim, None)
                if evicted is not None:
                    logger.info("Evicted session %s for user %s", evicted.session_id, victim)
                    evicted.transport.terminate()
            return session

    def values(self) -> list[Session]:
        return list(self._sessions.values())

    def remove(self, identity: str) -> Session | None:
        return self._sessions.pop(identity, None)

    def clear(self) -> None:
        self._sessions.clear()
