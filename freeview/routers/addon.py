"""
Stremio addon endpoints: manifest, catalog, meta and stream.
Thin glue over the channel registry.
"""
import base64
import binascii
import json
import logging
from typing import Optional
from urllib.parse import parse_qsl, unquote

from fastapi import APIRouter, Depends, Query, Request

from freeview.config import get_settings
from freeview.models.channel import Channel
from freeview.routers.utils import addon_rate_limit, get_addon_base, limiter
from freeview.services.channel_registry import ChannelRegistry, get_registry
from freeview.services.playlist_rewriter import encode_proxy_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["addon"])

ID_PREFIX = "nzfreeview-"
CATALOG_ID = "nzfreeview"
DEFAULT_ICON = "https://i.mjh.nz/tv-logo/tvmate/Freeview.png"


def build_manifest() -> dict:
    settings = get_settings()
    return {
        "id": "org.nzfreeview",
        "version": settings.app_version,
        "name": settings.app_name,
        "description": "Watch free New Zealand TV channels. Channel list from i.mjh.nz",
        "logo": DEFAULT_ICON,
        "background": DEFAULT_ICON,
        "resources": ["catalog", "meta", "stream"],
        "types": ["tv"],
        "catalogs": [
            {
                "type": "tv",
                "id": CATALOG_ID,
                "name": settings.app_name,
                "extra": [
                    {"name": "genre", "isRequired": False},
                    {"name": "search", "isRequired": False},
                ],
            }
        ],
        "idPrefixes": [ID_PREFIX],
        "behaviorHints": {"configurable": False},
    }


def parse_config(config: Optional[str]) -> Optional[list[str]]:
    """
    Decode a user config ({"channels": [ids]}) given as base64 or URL-encoded JSON.
    Returns the selected channel ids, or None when absent or unusable.
    """
    if not config:
        return None

    data = None
    try:
        padded = config + "=" * (-len(config) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode()).decode())
    except (binascii.Error, UnicodeDecodeError, ValueError):
        try:
            data = json.loads(unquote(config))
        except ValueError:
            logger.warning(f"Ignoring undecodable addon config: {config[:50]}")
            return None

    if not isinstance(data, dict) or not isinstance(data.get("channels"), list):
        return None
    return [str(channel_id) for channel_id in data["channels"]]


def sort_channels(channels: list[Channel]) -> list[Channel]:
    """Channel number order, then by name."""
    return sorted(channels, key=lambda c: (c.chno if c.chno is not None else 9999, c.name.lower()))


def select_channels(channels: list[Channel], selected_ids: Optional[list[str]]) -> list[Channel]:
    """User selection in the user's order, or every channel in channel order."""
    if selected_ids is None:
        return sort_channels(channels)
    by_id = {channel.id: channel for channel in channels}
    return [by_id[channel_id] for channel_id in selected_ids if channel_id in by_id]


def channel_meta(channel: Channel) -> dict:
    poster = channel.logo or DEFAULT_ICON
    return {
        "id": f"{ID_PREFIX}{channel.id}",
        "type": "tv",
        "name": channel.name,
        "poster": poster,
        "posterShape": "landscape",
        "logo": poster,
        "background": poster,
        "description": f"Live channel: {channel.name}",
        "genres": [channel.group] if channel.group else ["Live"],
        "country": ["NZ"],
        "language": ["en"],
    }


def build_streams(channel: Channel, addon_base: str) -> list[dict]:
    """Direct stream for native apps, proxied stream for web players."""
    stream_url = channel.stream_url
    stream_headers = channel.stream_headers

    direct = {
        "url": stream_url,
        "name": "NZ Freeview (Direct)",
        "title": channel.name,
    }
    if stream_headers:
        direct["behaviorHints"] = {
            "notWebReady": True,
            "proxyHeaders": {"request": stream_headers},
        }

    web = {
        "url": encode_proxy_url(stream_url, addon_base, stream_headers),
        "name": "NZ Freeview (Web)",
        "title": channel.name,
    }
    return [direct, web]


def _strip_prefix(meta_id: str) -> str:
    return meta_id[len(ID_PREFIX):] if meta_id.startswith(ID_PREFIX) else meta_id


async def _catalog(
    registry: ChannelRegistry,
    catalog_id: str,
    extra: Optional[str],
    config: Optional[str]
) -> dict:
    if catalog_id != CATALOG_ID:
        return {"metas": []}

    extras = dict(parse_qsl(extra or "", keep_blank_values=True))
    channels = select_channels(await registry.get(), parse_config(config))

    genre = extras.get("genre")
    if genre:
        channels = [c for c in channels if (c.group or "").lower() == genre.lower()]
    search = extras.get("search")
    if search:
        channels = [c for c in channels if search.lower() in c.name.lower()]

    logger.info(f"Catalog returning {len(channels)} channels")
    return {"metas": [channel_meta(channel) for channel in channels]}


@router.get("/manifest.json")
@router.get("/{config}/manifest.json")
async def addon_manifest(config: Optional[str] = None):
    """Addon manifest."""
    return build_manifest()


@router.get("/catalog/{media_type}/{catalog_id}.json")
@router.get("/catalog/{media_type}/{catalog_id}/{extra}.json")
@limiter.limit(addon_rate_limit)
async def addon_catalog(
    request: Request,
    media_type: str,
    catalog_id: str,
    extra: Optional[str] = None,
    config: Optional[str] = Query(None),
    registry: ChannelRegistry = Depends(get_registry),
):
    """
    Channel catalog.

    - **extra**: `genre=...&search=...`
    - **config**: base64 JSON `{"channels": [...]}` selecting and ordering channels
    """
    return await _catalog(registry, catalog_id, extra, config)


@router.get("/{config}/catalog/{media_type}/{catalog_id}.json")
@router.get("/{config}/catalog/{media_type}/{catalog_id}/{extra}.json")
@limiter.limit(addon_rate_limit)
async def addon_catalog_configured(
    request: Request,
    config: str,
    media_type: str,
    catalog_id: str,
    extra: Optional[str] = None,
    registry: ChannelRegistry = Depends(get_registry),
):
    """Channel catalog with the user config as a path prefix."""
    return await _catalog(registry, catalog_id, extra, config)


@router.get("/meta/{media_type}/{meta_id}.json")
@router.get("/{config}/meta/{media_type}/{meta_id}.json")
@limiter.limit(addon_rate_limit)
async def addon_meta(
    request: Request,
    media_type: str,
    meta_id: str,
    config: Optional[str] = None,
    registry: ChannelRegistry = Depends(get_registry),
):
    """Channel details."""
    channel = await registry.get_channel(_strip_prefix(meta_id))
    if not channel:
        logger.warning(f"Meta requested for unknown channel: {meta_id}")
        return {"meta": None}
    return {"meta": channel_meta(channel)}


@router.get("/stream/{media_type}/{meta_id}.json")
@router.get("/{config}/stream/{media_type}/{meta_id}.json")
@limiter.limit(addon_rate_limit)
async def addon_stream(
    request: Request,
    media_type: str,
    meta_id: str,
    config: Optional[str] = None,
    registry: ChannelRegistry = Depends(get_registry),
):
    """Playable streams for a channel."""
    channel_id = _strip_prefix(meta_id)
    channel = await registry.get_channel(channel_id)
    if not channel:
        logger.warning(f"Stream requested for unknown channel: {channel_id}")
        return {"streams": []}

    streams = build_streams(channel, get_addon_base(request))
    logger.info(f"Returning {len(streams)} streams for {channel.name}")
    return {"streams": streams}
