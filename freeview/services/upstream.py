"""
Outbound HTTP to broadcaster origin servers.
"""
import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """The upstream could not be reached or did not answer in time."""

    kind = "upstream_unreachable"

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.message = message
        self.url = url


class UpstreamTimeout(UpstreamError):
    kind = "upstream_timeout"


class UpstreamUnreachable(UpstreamError):
    kind = "upstream_unreachable"


class UpstreamFetcher:
    """Opens streaming upstream responses with a bounded wait."""

    # Statuses some origins answer HEAD with while GET works fine
    HEAD_FALLBACK_STATUSES = {400, 403, 405, 501}

    def __init__(self, client: httpx.AsyncClient, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    async def open(self, url: str, method: str, headers: dict[str, str]) -> httpx.Response:
        """
        Send the request and return once upstream headers arrived.

        The returned response is streaming; the caller must close it.
        HEAD requests that the origin rejects are retried once as GET.
        """
        if method != "HEAD":
            return await self._send(url, method, headers)

        try:
            response = await self._send(url, "HEAD", headers)
        except UpstreamUnreachable as e:
            if not isinstance(e.__cause__, httpx.RemoteProtocolError):
                raise
            logger.info(f"HEAD broke protocol for {url}, retrying with GET")
            return await self._send(url, "GET", headers)

        if response.status_code in self.HEAD_FALLBACK_STATUSES:
            logger.info(f"HEAD returned {response.status_code} for {url}, retrying with GET")
            await response.aclose()
            return await self._send(url, "GET", headers)
        return response

    async def read_text(self, response: httpx.Response) -> str:
        """Read a (small) streaming body fully, within the same timeout."""
        try:
            await asyncio.wait_for(response.aread(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await response.aclose()
            raise UpstreamTimeout(
                f"Upstream body not received within {self.timeout:g}s",
                str(response.url)
            ) from e
        except httpx.HTTPError as e:
            await response.aclose()
            raise UpstreamUnreachable(
                f"Upstream body read failed: {e}", str(response.url)
            ) from e
        return response.text

    async def _send(self, url: str, method: str, headers: dict[str, str]) -> httpx.Response:
        try:
            request = self.client.build_request(method, url, headers=headers)
            return await asyncio.wait_for(
                self.client.send(request, stream=True, follow_redirects=True),
                timeout=self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise UpstreamTimeout(
                f"Upstream did not respond within {self.timeout:g}s", url
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamUnreachable(
                f"Upstream request failed: {e.__class__.__name__}: {e}", url
            ) from e
