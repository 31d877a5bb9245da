"""Collaborators consumed by the MCP adapter: the location store and the API key validator.

Only in-memory implementations ship here; a deployment backed by a managed
database provides its own objects satisfying the same protocols.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import anyio
from pydantic import ValidationError

from location_mcp.exceptions import BadRequest
from location_mcp.types.location import ApiKey, ApiKeyWithSecret, Location
from location_mcp.utilities.logging import KEY_PREFIX_LENGTH, get_logger, redact_key

logger = get_logger(__name__)

API_KEY_PREFIX = "lmcp_"


class LocationStore(Protocol):
    async def get_location(self, user_id: str) -> Location | None: ...

    async def set_location(self, user_id: str, latitude: float, longitude: float) -> Location: ...

    async def remove_location(self, user_id: str) -> bool: ...


class ApiKeyValidator(Protocol):
    async def validate_api_key(self, key: str) -> str | None:
        """Return the user id owning ``key``, or None when the key is unknown."""
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryLocationStore:
    """Process-local location store, one row per user."""

    def __init__(self) -> None:
        self._locations: dict[str, Location] = {}
        self._lock = anyio.Lock()

    async def get_location(self, user_id: str) -> Location | None:
        return self._locations.get(user_id)

    async def set_location(self, user_id: str, latitude: float, longitude: float) -> Location:
        try:
            location = Location(user_id=user_id, latitude=latitude, longitude=longitude, timestamp=_utcnow())
        except ValidationError as e:
            raise BadRequest(
                "Latitude must be between -90 and 90 and longitude between -180 and 180"
            ) from e
        async with self._lock:
            self._locations[user_id] = location
        logger.debug("Stored location for user %s", user_id)
        return location

    async def remove_location(self, user_id: str) -> bool:
        async with self._lock:
            return self._locations.pop(user_id, None) is not None


@dataclass
class _KeyRecord:
    user_id: str
    created_at: datetime
    name: str | None = None


class InMemoryApiKeyStore:
    """API key registry that also acts as the ``ApiKeyValidator``."""

    def __init__(self, seed: Mapping[str, str] | None = None) -> None:
        self._keys: dict[str, _KeyRecord] = {}
        self._lock = anyio.Lock()
        for key, user_id in (seed or {}).items():
            self._keys[key] = _KeyRecord(user_id=user_id, created_at=_utcnow())

    async def validate_api_key(self, key: str) -> str | None:
        record = self._keys.get(key)
        return record.user_id if record else None

    async def create_api_key(self, user_id: str, name: str | None = None) -> ApiKeyWithSecret:
        raw_key = API_KEY_PREFIX + secrets.token_urlsafe(32)
        record = _KeyRecord(user_id=user_id, created_at=_utcnow(), name=name)
        async with self._lock:
            self._keys[raw_key] = record
        logger.info("Created API key %s for user %s", redact_key(raw_key), user_id)
        return ApiKeyWithSecret(
            raw_key=raw_key,
            key_prefix=raw_key[:KEY_PREFIX_LENGTH],
            user_id=user_id,
            created_at=record.created_at,
            name=name,
        )

    async def list_keys(self, user_id: str) -> list[ApiKey]:
        return [
            ApiKey(key_prefix=key[:KEY_PREFIX_LENGTH], user_id=r.user_id, created_at=r.created_at, name=r.name)
            for key, r in self._keys.items()
            if r.user_id == user_id
        ]

    async def delete_api_key(self, key: str) -> bool:
        async with self._lock:
            return self._keys.pop(key, None) is not None
