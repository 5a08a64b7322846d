"""
Streaming pass-through of upstream media responses.
"""
import logging
from typing import AsyncIterator, Optional

import httpx
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

logger = logging.getLogger(__name__)

# Upstream response headers forwarded to the player as-is
FORWARDED_HEADERS = ("content-length", "content-range", "content-encoding")

CHUNK_SIZE = 64 * 1024


async def _iter_upstream(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_raw(CHUNK_SIZE):
            yield chunk
    finally:
        await upstream.aclose()


def head_response(status_code: int, content_type: str, headers: dict[str, str]) -> Response:
    """Headers-only response that keeps the length a GET would report."""
    response = Response(status_code=status_code, media_type=content_type)
    # Response() sets Content-Length: 0 for the empty body
    if "content-length" in response.headers:
        del response.headers["content-length"]
    response.headers.update(headers)
    return response


def relay_response(
    upstream: httpx.Response,
    method: str,
    content_type: str,
    extra_headers: Optional[dict[str, str]] = None
) -> Response:
    """
    Forward an upstream response without buffering it.

    Status code, content type and length/range headers are preserved.
    For HEAD only headers are sent and the upstream body is never read.
    """
    headers = dict(extra_headers or {})
    for name in FORWARDED_HEADERS:
        value = upstream.headers.get(name)
        if value is not None:
            headers[name] = value

    if method == "HEAD":
        return head_response(upstream.status_code, content_type, headers)

    return StreamingResponse(
        _iter_upstream(upstream),
        status_code=upstream.status_code,
        media_type=content_type,
        headers=headers,
        background=BackgroundTask(upstream.aclose)
    )
