"""
CORS stream proxy endpoints.
Web players fetch broadcaster playlists and segments through these routes.
"""
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request

from freeview.routers.utils import get_addon_base
from freeview.services.playlist_rewriter import PROXY_PATH
from freeview.services.stream_proxy import StreamProxyService, get_proxy_service, options_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])


def _encoded_target(request: Request, encoded_url: str) -> str:
    """
    The still percent-encoded target from the raw request path.

    The routed path parameter has already been decoded once, which would
    corrupt targets that carry their own %xx escapes.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
        index = path.find(PROXY_PATH)
        if index != -1:
            return path[index + len(PROXY_PATH):]
    return quote(encoded_url, safe="")


@router.api_route("/proxy/{encoded_url:path}", methods=["GET", "HEAD"])
async def proxy_stream(
    encoded_url: str,
    request: Request,
    headers: Optional[str] = Query(None, description="URL-encoded JSON object of header overrides"),
    proxy: StreamProxyService = Depends(get_proxy_service),
):
    """
    Proxy a playlist, segment or key.

    - **encoded_url**: percent-encoded absolute upstream URL
    - **headers**: optional JSON object of request header overrides
    """
    proxy_request = proxy.build_request(
        request.method,
        _encoded_target(request, encoded_url),
        get_addon_base(request),
        headers_param=headers,
        range_header=request.headers.get("range")
    )
    return await proxy.handle(proxy_request)


@router.options("/proxy/{encoded_url:path}")
async def proxy_preflight(encoded_url: str):
    """CORS preflight, answered without contacting the upstream."""
    return options_response()
