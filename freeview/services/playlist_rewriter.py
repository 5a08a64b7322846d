"""
HLS playlist rewriting.

Every URI line of a playlist (media segment or nested playlist) is resolved
against the playlist's own URL and replaced with a same-origin proxy URL.
Tags, comments and blank lines are emitted exactly as received.
"""
import json
import logging
from typing import Optional
from urllib.parse import quote, unquote, urljoin, urlparse

logger = logging.getLogger(__name__)

PROXY_PATH = "/proxy/"

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_CONTENT_TYPE = "video/mp2t"


def is_http_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not url.startswith(("http://", "https://")):
        return False
    try:
        return bool(urlparse(url).netloc)
    except ValueError:
        return False


def encode_proxy_url(
    target_url: str,
    addon_base: str,
    header_overrides: Optional[dict[str, str]] = None
) -> str:
    """Build the proxy URL that fetches target_url through this service."""
    proxy_url = f"{addon_base.rstrip('/')}{PROXY_PATH}{quote(target_url, safe='')}"
    if header_overrides:
        encoded_headers = quote(json.dumps(header_overrides, separators=(",", ":")), safe="")
        proxy_url = f"{proxy_url}?headers={encoded_headers}"
    return proxy_url


def decode_proxy_target(encoded: str) -> str:
    """Inverse of the path encoding used by encode_proxy_url."""
    return unquote(encoded)


def is_playlist(content_type: Optional[str], url: str) -> bool:
    """MPEG-URL content type or a .m3u8 path."""
    if content_type and "mpegurl" in content_type.lower():
        return True
    return _path_of(url).lower().endswith(".m3u8")


def is_segment(content_type: Optional[str], url: str) -> bool:
    """MPEG-TS content type or a .ts path."""
    if content_type and "mp2t" in content_type.lower():
        return True
    return _path_of(url).lower().endswith(".ts")


def _path_of(url: str) -> str:
    try:
        return urlparse(url).path
    except ValueError:
        return ""


def rewrite_playlist(
    body: str,
    source_url: str,
    addon_base: str,
    header_overrides: Optional[dict[str, str]] = None
) -> str:
    """
    Rewrite URI lines of an HLS playlist to go through the proxy.

    Args:
        body: Playlist text as received from upstream
        source_url: Absolute URL the playlist was fetched from (after redirects)
        addon_base: Externally visible base URL of this service
        header_overrides: Caller header overrides to pass on to child requests

    Returns:
        The rewritten playlist text
    """
    proxy_prefix = f"{addon_base.rstrip('/')}{PROXY_PATH}"
    rewritten_lines = []

    for line in body.split("\n"):
        uri = line.strip()
        if not uri or uri.startswith("#"):
            rewritten_lines.append(line)
            continue

        absolute_url = _resolve(uri, source_url)
        if absolute_url is None:
            rewritten_lines.append(line)
            continue

        if absolute_url.startswith(proxy_prefix):
            # Already proxied, wrapping again would double-proxy
            rewritten_lines.append(line)
            continue

        # Keep CRLF playlists consistently CRLF
        line_end = "\r" if line.endswith("\r") else ""
        rewritten_lines.append(encode_proxy_url(absolute_url, addon_base, header_overrides) + line_end)

    return "\n".join(rewritten_lines)


def _resolve(uri: str, source_url: str) -> Optional[str]:
    """Resolve a playlist reference, None when it is not a usable URL."""
    try:
        absolute_url = urljoin(source_url, uri)
    except ValueError as e:
        logger.warning(f"Leaving unresolvable playlist line as-is: {uri!r} ({e})")
        return None

    if not is_http_url(absolute_url):
        logger.warning(f"Leaving non-http playlist line as-is: {uri!r}")
        return None
    return absolute_url


def playlist_content_length(text: str) -> int:
    """Byte length of the rewritten playlist as sent on the wire."""
    return len(text.encode("utf-8"))
