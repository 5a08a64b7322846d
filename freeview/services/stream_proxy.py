"""
HLS stream proxy service.
Fetches broadcaster streams server-side so browser players avoid CORS and
header restrictions. Playlists are rewritten, everything else is relayed.
"""
import json
import logging
import re
from typing import Optional

import httpx
from fastapi import Request
from fastapi.responses import Response

from freeview.config import Settings
from freeview.models.channel import ProxyRequest
from freeview.services.playlist_rewriter import (
    PLAYLIST_CONTENT_TYPE,
    SEGMENT_CONTENT_TYPE,
    decode_proxy_target,
    is_http_url,
    is_playlist,
    is_segment,
    playlist_content_length,
    rewrite_playlist,
)
from freeview.services.relay import head_response, relay_response
from freeview.services.upstream import UpstreamError, UpstreamFetcher

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type, Accept, Origin",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Content-Type, Accept-Ranges",
}

# Live playlists and segments rotate, caching them anywhere is wrong
LIVE_MEDIA_HEADERS = {
    "Accept-Ranges": "bytes",
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Framing and hop-by-hop headers are owned by the HTTP client
BLOCKED_OVERRIDE_HEADERS = {
    "host", "content-length", "connection", "transfer-encoding", "keep-alive",
    "upgrade", "te", "trailer", "proxy-connection", "proxy-authorization",
}

HEADER_NAME_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class ProxyError(Exception):
    """A proxy request failed; rendered as a JSON error body."""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        url: Optional[str] = None,
        upstream_status: Optional[int] = None,
        upstream_status_text: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message
        self.url = url
        self.upstream_status = upstream_status
        self.upstream_status_text = upstream_status_text

    def to_dict(self) -> dict:
        body = {"error": self.error, "message": self.message, "url": self.url}
        if self.upstream_status is not None:
            body["status"] = self.upstream_status
            body["statusText"] = self.upstream_status_text or ""
        return body


def parse_header_overrides(raw: Optional[str]) -> dict[str, str]:
    """
    Parse the `headers` query parameter into a strict str -> str mapping.

    The blob itself must be a JSON object. Entries that are not plain
    string headers, or that would let a caller smuggle framing headers or
    line breaks upstream, are dropped.
    """
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        raise ProxyError(400, "invalid_headers", "headers parameter is not valid JSON")
    if not isinstance(data, dict):
        raise ProxyError(400, "invalid_headers", "headers parameter must be a JSON object")

    overrides = {}
    for name, value in data.items():
        if not isinstance(value, str) or not HEADER_NAME_PATTERN.match(name):
            logger.warning(f"Ignoring malformed header override: {name!r}")
            continue
        if "\r" in value or "\n" in value:
            logger.warning(f"Ignoring header override with line break: {name!r}")
            continue
        if name.lower() in BLOCKED_OVERRIDE_HEADERS:
            logger.warning(f"Ignoring disallowed header override: {name!r}")
            continue
        overrides[name] = value
    return overrides


def merge_headers(defaults: dict[str, str], overrides: dict[str, str]) -> dict[str, str]:
    """Overlay overrides on defaults, matching header names case-insensitively."""
    merged = dict(defaults)
    for name, value in overrides.items():
        for existing in [k for k in merged if k.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def without_range(headers: dict[str, str]) -> dict[str, str]:
    return {name: value for name, value in headers.items() if name.lower() != "range"}


class StreamProxyService:
    """Coordinates one proxied request: fetch, then rewrite or relay."""

    def __init__(self, fetcher: UpstreamFetcher, settings: Settings):
        self.fetcher = fetcher
        self.settings = settings

    def default_headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.settings.proxy_user_agent,
            "Referer": self.settings.proxy_default_referer,
            "seekable": "0",
        }

    def build_request(
        self,
        method: str,
        encoded_target: str,
        addon_base: str,
        headers_param: Optional[str] = None,
        range_header: Optional[str] = None
    ) -> ProxyRequest:
        """Validate the inbound request and build its proxy context."""
        if not encoded_target:
            raise ProxyError(400, "invalid_url", "No encoded URL provided to proxy")

        target_url = decode_proxy_target(encoded_target)
        if not is_http_url(target_url):
            raise ProxyError(
                400,
                "invalid_url",
                "Invalid URL provided for proxy. Must be an absolute http or https URL.",
                url=target_url
            )

        overrides = parse_header_overrides(headers_param)
        defaults = self.default_headers()
        if range_header:
            defaults["Range"] = range_header

        return ProxyRequest(
            method=method,
            target_url=target_url,
            addon_base=addon_base,
            headers=merge_headers(defaults, overrides),
            header_overrides=overrides
        )

    async def handle(self, proxy_request: ProxyRequest) -> Response:
        """Proxy a GET or HEAD request."""
        method = proxy_request.method
        target_url = proxy_request.target_url
        logger.info(f"[PROXY] [{method}] Proxying request to: {target_url}")

        # Playlists are rewritten whole: GET even for HEAD, and never a byte range
        upstream_method = method
        upstream_headers = proxy_request.headers
        if is_playlist(None, target_url):
            upstream_headers = without_range(upstream_headers)
            if method == "HEAD":
                upstream_method = "GET"

        upstream = await self._open(target_url, upstream_method, upstream_headers)
        handed_off = False
        try:
            if not upstream.is_success:
                raise self._upstream_status_error(upstream, target_url)

            content_type = upstream.headers.get("content-type", "")
            final_url = str(upstream.url)

            if is_playlist(content_type, final_url) or is_playlist(None, target_url):
                if upstream.request.method == "HEAD" or "range" in upstream.request.headers:
                    await upstream.aclose()
                    upstream = await self._open(final_url, "GET", without_range(proxy_request.headers))
                    if not upstream.is_success:
                        raise self._upstream_status_error(upstream, target_url)
                    final_url = str(upstream.url)
                response = await self._proxy_playlist(proxy_request, upstream, final_url)
            else:
                response = self._relay(proxy_request, upstream, content_type, final_url)
                handed_off = method != "HEAD"
        finally:
            if not handed_off:
                await upstream.aclose()

        logger.info(f"[PROXY] [{method}] {target_url} -> {response.status_code}")
        return response

    async def _open(self, url: str, method: str, headers: dict[str, str]) -> httpx.Response:
        try:
            return await self.fetcher.open(url, method, headers)
        except UpstreamError as e:
            logger.error(f"[PROXY] {e.kind} for {url}: {e.message}")
            raise ProxyError(503, e.kind, e.message, url=url)

    def _upstream_status_error(self, upstream: httpx.Response, url: str) -> ProxyError:
        status = upstream.status_code
        logger.warning(f"[PROXY] Upstream HTTP {status} for {url}")
        return ProxyError(
            status if status >= 400 else 502,
            "upstream_error",
            f"Upstream HTTP {status}: {upstream.reason_phrase}",
            url=url,
            upstream_status=status,
            upstream_status_text=upstream.reason_phrase
        )

    async def _proxy_playlist(
        self,
        proxy_request: ProxyRequest,
        upstream: httpx.Response,
        final_url: str
    ) -> Response:
        try:
            body = await self.fetcher.read_text(upstream)
        except UpstreamError as e:
            raise ProxyError(
                503,
                e.kind,
                e.message,
                url=proxy_request.target_url,
                upstream_status=upstream.status_code,
                upstream_status_text=upstream.reason_phrase
            )

        rewritten = rewrite_playlist(
            body,
            final_url,
            proxy_request.addon_base,
            proxy_request.header_overrides
        )
        content_type = upstream.headers.get("content-type") or PLAYLIST_CONTENT_TYPE
        headers = {
            **CORS_HEADERS,
            **LIVE_MEDIA_HEADERS,
            "Content-Length": str(playlist_content_length(rewritten)),
        }

        if proxy_request.method == "HEAD":
            return head_response(200, content_type, headers)
        return Response(
            content=rewritten.encode("utf-8"),
            status_code=200,
            media_type=content_type,
            headers=headers
        )

    def _relay(
        self,
        proxy_request: ProxyRequest,
        upstream: httpx.Response,
        content_type: str,
        final_url: str
    ) -> Response:
        headers = dict(CORS_HEADERS)
        if is_segment(content_type, final_url) or is_segment(None, proxy_request.target_url):
            headers.update(LIVE_MEDIA_HEADERS)
            content_type = content_type or SEGMENT_CONTENT_TYPE
        return relay_response(
            upstream,
            proxy_request.method,
            content_type or "application/octet-stream",
            headers
        )


def options_response() -> Response:
    """CORS preflight answer; never touches the upstream."""
    return Response(status_code=200, headers=CORS_HEADERS)


def get_proxy_service(request: Request) -> StreamProxyService:
    """Proxy service owned by the running application."""
    return request.app.state.proxy_service
