from __future__ import annotations

from starlette.requests import Request

from location_mcp.exceptions import BodyTooLarge


async def read_request_body(request: Request, *, max_body_bytes: int | None) -> bytes:
    """Read an HTTP request body with a hard cap.

    Raises ``BodyTooLarge`` as soon as the declared or streamed size passes
    ``max_body_bytes``; nothing beyond the cap is buffered.
    """
    if max_body_bytes is None:
        return await request.body()

    if max_body_bytes <= 0:
        raise ValueError("max_body_bytes must be positive or None")

    content_length = request.headers.get("content-length")
    if content_length is not None and content_length.isdigit() and int(content_length) > max_body_bytes:
        raise BodyTooLarge(max_body_bytes)

    body = bytearray()
    async for chunk in request.stream():
        if len(body) + len(chunk) > max_body_bytes:
            raise BodyTooLarge(max_body_bytes)
        body.extend(chunk)
    return bytes(body)
