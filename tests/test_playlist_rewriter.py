"""
Tests for HLS playlist rewriting.
"""
import json
from urllib.parse import unquote

from freeview.services.playlist_rewriter import (
    decode_proxy_target,
    encode_proxy_url,
    is_playlist,
    is_segment,
    playlist_content_length,
    rewrite_playlist,
)

ADDON_BASE = "http://api.local"
SOURCE_URL = "https://example.test/live/stream.m3u8"


class TestProxyUrlEncoding:
    """Path encoding of upstream URLs."""

    def test_round_trip(self):
        urls = [
            "https://example.test/live.m3u8",
            "http://example.test:8080/a/b/seg 1.ts?token=a%20b&x=1",
            "https://example.test/päth/ßegment.ts#frag",
        ]
        for url in urls:
            encoded = encode_proxy_url(url, ADDON_BASE)
            path_part = encoded[len(f"{ADDON_BASE}/proxy/"):]
            assert "/" not in path_part
            assert decode_proxy_target(path_part) == url

    def test_headers_query(self):
        url = encode_proxy_url("https://example.test/a.ts", ADDON_BASE, {"Referer": "https://tvnz.test/"})
        assert url.startswith(f"{ADDON_BASE}/proxy/https%3A%2F%2Fexample.test%2Fa.ts?headers=")
        assert json.loads(unquote(url.split("?headers=", 1)[1])) == {"Referer": "https://tvnz.test/"}

    def test_trailing_slash_on_base(self):
        url = encode_proxy_url("https://example.test/a.ts", "http://api.local/")
        assert url == "http://api.local/proxy/https%3A%2F%2Fexample.test%2Fa.ts"


class TestRewritePlaylist:
    """Line-by-line playlist rewriting."""

    def test_relative_segments(self, sample_playlist):
        rewritten = rewrite_playlist(sample_playlist, "https://example.test/live.m3u8", ADDON_BASE)
        assert "http://api.local/proxy/https%3A%2F%2Fexample.test%2Fsegment1.ts" in rewritten
        assert "http://api.local/proxy/https%3A%2F%2Fexample.test%2Fsegment2.ts" in rewritten
        assert "\nsegment1.ts" not in rewritten

    def test_master_playlist_references(self, sample_master_playlist):
        rewritten = rewrite_playlist(sample_master_playlist, SOURCE_URL, ADDON_BASE)
        uri_lines = [line for line in rewritten.split("\n") if not line.startswith("#")]
        targets = [decode_proxy_target(line[len(f"{ADDON_BASE}/proxy/"):]) for line in uri_lines]
        assert targets == [
            "https://cdn.example.test/live/720p/index.m3u8",
            "https://example.test/live/480p/index.m3u8?token=abc",
            "https://alt.example.test/live/360p/index.m3u8",
        ]

    def test_root_relative_reference(self):
        rewritten = rewrite_playlist("#EXTM3U\n/other/seg.ts", SOURCE_URL, ADDON_BASE)
        assert rewritten.split("\n")[1] == encode_proxy_url("https://example.test/other/seg.ts", ADDON_BASE)

    def test_tags_and_blank_lines_untouched(self, sample_playlist):
        rewritten = rewrite_playlist(sample_playlist, SOURCE_URL, ADDON_BASE)
        original_lines = sample_playlist.split("\n")
        rewritten_lines = rewritten.split("\n")
        assert len(rewritten_lines) == len(original_lines)
        for before, after in zip(original_lines, rewritten_lines):
            if not before.strip() or before.strip().startswith("#"):
                assert after == before

    def test_crlf_line_endings_kept(self):
        body = "#EXTM3U\r\n#EXTINF:6.0,\r\nseg.ts\r\n"
        rewritten = rewrite_playlist(body, SOURCE_URL, ADDON_BASE)
        lines = rewritten.split("\n")
        assert lines[0] == "#EXTM3U\r"
        assert lines[1] == "#EXTINF:6.0,\r"
        assert lines[2] == encode_proxy_url("https://example.test/live/seg.ts", ADDON_BASE) + "\r"
        assert lines[3] == ""
        assert rewritten.count("\r\n") == 3
        assert rewrite_playlist(rewritten, SOURCE_URL, ADDON_BASE) == rewritten

    def test_idempotent(self, sample_playlist, sample_master_playlist):
        for body in (sample_playlist, sample_master_playlist):
            once = rewrite_playlist(body, SOURCE_URL, ADDON_BASE)
            twice = rewrite_playlist(once, SOURCE_URL, ADDON_BASE)
            assert twice == once

    def test_idempotent_with_headers(self, sample_playlist):
        headers = {"Referer": "https://tvnz.test/"}
        once = rewrite_playlist(sample_playlist, SOURCE_URL, ADDON_BASE, headers)
        assert rewrite_playlist(once, SOURCE_URL, ADDON_BASE, headers) == once

    def test_unresolvable_line_passes_through(self):
        body = "#EXTM3U\n#EXTINF:6.0,\nhttp://[::1/broken.ts\n#EXTINF:6.0,\ngood.ts"
        rewritten = rewrite_playlist(body, SOURCE_URL, ADDON_BASE)
        lines = rewritten.split("\n")
        assert lines[2] == "http://[::1/broken.ts"
        assert lines[4] == encode_proxy_url("https://example.test/live/good.ts", ADDON_BASE)

    def test_non_http_reference_passes_through(self):
        body = "#EXTM3U\ndata:text/plain,hello"
        assert rewrite_playlist(body, SOURCE_URL, ADDON_BASE) == body

    def test_headers_appended_to_children(self, sample_playlist):
        rewritten = rewrite_playlist(sample_playlist, SOURCE_URL, ADDON_BASE, {"User-Agent": "TestAgent"})
        uri_lines = [line for line in rewritten.split("\n") if line.startswith(ADDON_BASE)]
        assert len(uri_lines) == 2
        for line in uri_lines:
            assert json.loads(unquote(line.split("?headers=", 1)[1])) == {"User-Agent": "TestAgent"}

    def test_content_length_counts_bytes(self):
        assert playlist_content_length("#EXTM3U\n") == 8
        assert playlist_content_length("#EXT-X-SESSION-DATA:VALUE=\"Māori\"") == 34


class TestContentDetection:
    """Playlist and segment detection."""

    def test_playlist_by_content_type(self):
        assert is_playlist("application/vnd.apple.mpegurl", "https://x.test/live")
        assert is_playlist("application/x-mpegURL; charset=utf-8", "https://x.test/live")
        assert is_playlist("audio/mpegurl", "https://x.test/live")

    def test_playlist_by_extension(self):
        assert is_playlist(None, "https://x.test/live/index.m3u8?token=1")
        assert is_playlist("text/plain", "https://x.test/LIVE.M3U8")
        assert not is_playlist("video/mp2t", "https://x.test/seg.ts")

    def test_segment_detection(self):
        assert is_segment("video/MP2T", "https://x.test/chunk")
        assert is_segment(None, "https://x.test/seg-1.ts?x=1")
        assert not is_segment("application/octet-stream", "https://x.test/key.bin")
