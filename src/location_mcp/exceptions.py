"""Exceptions raised by the location MCP server."""

from typing import Any

from location_mcp.types.json_rpc import JSONRPC_VERSION, ErrorData


class McpError(Exception):
    """Protocol-level error returned to the MCP client as a JSON-RPC error object.

    Attributes:
        error: The ErrorData sent back to the client
    """

    error: ErrorData

    def __init__(self, code: int, message: str, data: Any | None = None):
        super().__init__(message)
        self.error = ErrorData(code=code, message=message, data=data)


class LocationMCPError(Exception):
    """Base error for failures rendered as an HTTP ``{error, message}`` body."""

    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_body(self) -> dict[str, Any]:
        return {"error": self.error, "message": self.message}


class Unauthorized(LocationMCPError):
    """Missing or invalid credential. The message never says which check failed beyond that."""

    status_code = 401
    error = "Unauthorized"


class BadRequest(LocationMCPError):
    status_code = 400
    error = "Bad Request"


class InvalidMessage(BadRequest):
    """Malformed MCP body, answered with a JSON-RPC error object and a null id."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code

    def to_body(self) -> dict[str, Any]:
        return {"jsonrpc": JSONRPC_VERSION, "id": None, "error": {"code": self.code, "message": self.message}}


class BodyTooLarge(BadRequest):
    status_code = 413
    error = "Payload Too Large"

    def __init__(self, max_body_bytes: int):
        super().__init__(f"Request body exceeds max_body_bytes={max_body_bytes}")
        self.max_body_bytes = max_body_bytes


class NotFound(LocationMCPError):
    status_code = 404
    error = "Not found"


class SessionNotFound(NotFound):
    """The client presented a session id that this process does not hold."""

    error = "Session not found"


class MethodNotAllowed(LocationMCPError):
    status_code = 405
    error = "Method Not Allowed"


class Conflict(LocationMCPError):
    status_code = 409
    error = "Conflict"


class InternalError(LocationMCPError):
    status_code = 500
    error = "Internal server error"
