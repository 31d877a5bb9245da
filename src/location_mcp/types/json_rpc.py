"""JSON-RPC 2.0 envelopes carried over the MCP HTTP transport."""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603
RESOURCE_NOT_FOUND: Final[int] = -32002

NOTIFICATION_PREFIX: Final[str] = "notifications/"

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response.

    ``id`` is ``None`` only for requests sent without one by clients that skip
    the envelope; they are answered with ``"id": null``.
    """

    id: RequestId | None = None
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResultResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId | None
    result: dict[str, Any]


class JSONRPCErrorResponse(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse


def parse_message(raw: Any) -> JSONRPCMessage:
    """Classify one decoded JSON value as a JSON-RPC message.

    Discrimination is based on field presence:

    - ``method`` and ``id``: request
    - ``method`` without ``id``: notification for ``notifications/*`` methods,
      otherwise a request that will be answered with a null id
    - ``error``: error response
    - ``result``: result response

    Raises:
        ValueError: if the value is not an object or matches no message shape.
        pydantic.ValidationError: if a recognised shape has invalid fields.
    """
    if not isinstance(raw, dict):
        raise ValueError("JSON-RPC message must be an object")

    if "method" in raw:
        method = raw["method"]
        if "id" not in raw and isinstance(method, str) and method.startswith(NOTIFICATION_PREFIX):
            return JSONRPCNotification.model_validate(raw)
        return JSONRPCRequest.model_validate(raw)
    if "error" in raw:
        return JSONRPCErrorResponse.model_validate(raw)
    if "result" in raw:
        return JSONRPCResultResponse.model_validate(raw)
    raise ValueError("JSON-RPC message has neither method, result nor error")


def parse_payload(raw: Any) -> tuple[list[JSONRPCMessage], bool]:
    """Parse a POST body into messages.

    Returns the messages and whether the body was a batch.
    """
    if isinstance(raw, list):
        if not raw:
            raise ValueError("JSON-RPC batch must not be empty")
        return [parse_message(item) for item in raw], True
    return [parse_message(raw)], False


def to_wire(message: JSONRPCMessage) -> dict[str, Any]:
    """Serialize a message for the wire, keeping ``"id": null`` on responses."""
    data = message.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(message, (JSONRPCResultResponse, JSONRPCErrorResponse)):
        data.setdefault("id", None)
    return data
