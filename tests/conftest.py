"""
Pytest configuration and fixtures for the Freeview addon tests.
"""
import pytest

from freeview.config import Settings

FEED_URL = "https://feed.test/nz/kodi-tv.m3u8"
ADDON_BASE = "http://testserver"


@pytest.fixture
def test_settings():
    """Settings that never touch the network on their own."""
    return Settings(
        channel_feed_url=FEED_URL,
        auto_refresh_interval_seconds=0,
        proxy_timeout_seconds=5.0,
        public_base_url=None,
    )


@pytest.fixture
def sample_playlist():
    """Live media playlist with relative segments."""
    return """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:6
#EXT-X-MEDIA-SEQUENCE:4711

#EXTINF:6.000,
segment1.ts
#EXTINF:6.000,
segment2.ts"""


@pytest.fixture
def sample_master_playlist():
    """Master playlist mixing absolute, relative and protocol-relative variants."""
    return """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=2560000,RESOLUTION=1280x720
https://cdn.example.test/live/720p/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=1280000,RESOLUTION=854x480
480p/index.m3u8?token=abc
#EXT-X-STREAM-INF:BANDWIDTH=640000,RESOLUTION=640x360
//alt.example.test/live/360p/index.m3u8"""


@pytest.fixture
def sample_feed():
    """Channel feed in the i.mjh.nz Kodi layout."""
    return """#EXTM3U x-tvg-url="https://i.mjh.nz/nz/epg.xml.gz"
#EXTINF:-1 channel-id="mjh-tvnz-2" tvg-id="mjh-tvnz-2" tvg-logo="https://logo.test/tvnz2.png" tvg-chno="2" group-title="Entertainment",TVNZ 2
https://tvnz.test/tvnz2/index.m3u8
#EXTINF:-1 channel-id="mjh-tvnz-1" tvg-id="mjh-tvnz-1" tvg-logo="https://logo.test/tvnz1.png" tvg-chno="1" group-title="News",TVNZ 1
https://tvnz.test/tvnz1/index.m3u8
#EXTINF:-1 tvg-chno="60" group-title="Sports",Trackside 1
#EXTVLCOPT:http-user-agent=TracksideApp/1.0
https://trackside.test/live.m3u8|Referer=https%3A%2F%2Ftrackside.test%2F
#EXTINF:-1 channel-id="mjh-no-url",No URL Channel
"""
