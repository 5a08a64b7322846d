"""
M3U channel feed parser.
Turns the broadcaster channel playlist into Channel entries.
"""
import logging
import re
from typing import Optional

import httpx

from freeview.models.channel import Channel

logger = logging.getLogger(__name__)

# key="value" attributes on an #EXTINF line
ATTRIBUTE_PATTERN = re.compile(r'([\w-]+)="([^"]*)"')

# VLC options carrying request headers
VLC_HEADER_OPTIONS = {
    "http-user-agent": "User-Agent",
    "http-referrer": "Referer",
    "http-referer": "Referer",
    "http-origin": "Origin",
}


def _slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip()).lower()


def _parse_chno(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_channel_feed(content: str) -> list[Channel]:
    """
    Parse an extended M3U channel list.

    Args:
        content: Feed text

    Returns:
        Channels in feed order; entries lacking an id, name or URL are skipped
    """
    channels = []
    current_info = None
    current_headers: dict[str, str] = {}

    for line in content.splitlines():
        line = line.strip()

        if line.startswith("#EXTINF:"):
            attrs = dict(ATTRIBUTE_PATTERN.findall(line))
            last_comma = line.rfind(",")
            name = line[last_comma + 1:].strip() if last_comma != -1 else ""
            channel_id = attrs.get("channel-id") or attrs.get("tvg-id") or (_slugify(name) if name else "")
            current_info = {
                "id": channel_id,
                "name": name,
                "logo": attrs.get("tvg-logo") or None,
                "group": attrs.get("group-title") or None,
                "chno": _parse_chno(attrs.get("tvg-chno")),
            }
            current_headers = {}

        elif line.startswith("#EXTVLCOPT:") and current_info:
            option, _, value = line[len("#EXTVLCOPT:"):].partition("=")
            header = VLC_HEADER_OPTIONS.get(option.strip().lower())
            if header and value:
                current_headers[header] = value.strip()

        elif line and not line.startswith("#") and current_info:
            if current_info["id"] and current_info["name"]:
                channels.append(Channel(url=line, headers=current_headers, **current_info))
            else:
                logger.debug(f"Skipping feed entry without id or name: {line}")
            current_info = None
            current_headers = {}

    return channels


class ChannelFeedLoader:
    """Fetches and parses the channel feed for the registry."""

    def __init__(self, client: httpx.AsyncClient, feed_url: str, timeout: float = 30.0):
        self.client = client
        self.feed_url = feed_url
        self.timeout = timeout

    async def __call__(self) -> list[Channel]:
        logger.info(f"Fetching channel feed from {self.feed_url}")
        response = await self.client.get(self.feed_url, timeout=self.timeout, follow_redirects=True)
        response.raise_for_status()
        channels = parse_channel_feed(response.text)
        logger.info(f"Parsed {len(channels)} channels from feed")
        return channels
