"""
Channel data models.
Maps entries of the upstream channel feed.
"""
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qsl

from pydantic import BaseModel, ConfigDict, Field

# Kodi style inline headers: "https://host/live.m3u8|User-Agent=abc&Referer=xyz"
INLINE_HEADER_DELIMITER = "|"


class Channel(BaseModel):
    """A live TV channel from the channel feed."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    logo: Optional[str] = None
    chno: Optional[int] = None
    group: Optional[str] = None
    url: str
    headers: dict[str, str] = Field(default_factory=dict)

    @property
    def stream_url(self) -> str:
        """Playable URL without any inline headers."""
        return self.url.split(INLINE_HEADER_DELIMITER, 1)[0].strip()

    @property
    def stream_headers(self) -> dict[str, str]:
        """Structured headers overlaid with the inline ones from the URL."""
        merged = dict(self.headers)
        if INLINE_HEADER_DELIMITER in self.url:
            inline = self.url.split(INLINE_HEADER_DELIMITER, 1)[1]
            for name, value in parse_qsl(inline, keep_blank_values=True):
                if name.strip():
                    merged[name.strip()] = value
        return merged


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of the channel list at one point in time."""
    channels: tuple[Channel, ...] = ()
    fetched_at: float = 0.0  # monotonic clock reading of the refresh, 0 = never


@dataclass
class ProxyRequest:
    """Per-request proxy context. Never shared between requests."""
    method: str
    target_url: str
    addon_base: str
    headers: dict[str, str] = field(default_factory=dict)
    header_overrides: dict[str, str] = field(default_factory=dict)
