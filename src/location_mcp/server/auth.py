"""API key authentication for inbound HTTP requests."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from location_mcp.exceptions import Unauthorized
from location_mcp.stores import ApiKeyValidator
from location_mcp.utilities.logging import redact_key

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "bearer "
API_KEY_QUERY_PARAMS = ("apiKey", "api_key")

MISSING_KEY_MESSAGE = (
    "API key required. Pass as X-API-Key header, Authorization: Bearer header, or apiKey query parameter."
)
INVALID_KEY_MESSAGE = "Invalid API key"


def extract_api_key(headers: Mapping[str, str], query_params: Mapping[str, str]) -> str | None:
    """Find the presented API key. First match wins.

    Order: ``X-API-Key`` header, ``Authorization: Bearer <key>``, ``apiKey``
    query parameter, ``api_key`` query parameter.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    key = lowered.get(API_KEY_HEADER)
    if key:
        return key

    authorization = lowered.get(AUTHORIZATION_HEADER, "")
    if authorization.lower().startswith(BEARER_PREFIX):
        token = authorization[len(BEARER_PREFIX) :].strip()
        if token:
            return token

    for name in API_KEY_QUERY_PARAMS:
        key = query_params.get(name)
        if key:
            return key
    return None


class RequestAuthenticator:
    """Resolve a request to the user id owning its API key.

    Fails closed: a missing key, an unknown key, and a validator fault all
    raise ``Unauthorized``. No rate limiting or lockout is applied.
    """

    def __init__(self, validator: ApiKeyValidator):
        self.validator = validator

    async def authenticate(self, headers: Mapping[str, str], query_params: Mapping[str, str]) -> str:
        api_key = extract_api_key(headers, query_params)
        if api_key is None:
            logger.warning("Rejected request without API key")
            raise Unauthorized(MISSING_KEY_MESSAGE)

        try:
            user_id = await self.validator.validate_api_key(api_key)
        except Exception:
            logger.exception("API key validation failed for %s", redact_key(api_key))
            raise Unauthorized(INVALID_KEY_MESSAGE) from None

        if not user_id:
            logger.warning("Rejected invalid API key %s", redact_key(api_key))
            raise Unauthorized(INVALID_KEY_MESSAGE)
        return user_id
