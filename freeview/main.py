"""
NZ Freeview Stremio Addon - FastAPI Backend

Serves free-to-air NZ channels to Stremio and proxies their HLS streams
for browser-based players.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from freeview.config import Settings, get_settings
from freeview.routers import addon, proxy
from freeview.routers.utils import limiter
from freeview.services.channel_registry import ChannelRegistry, get_registry
from freeview.services.m3u_parser import ChannelFeedLoader
from freeview.services.playlist_rewriter import PROXY_PATH
from freeview.services.stream_proxy import CORS_HEADERS, ProxyError, StreamProxyService
from freeview.services.upstream import UpstreamFetcher

logger = logging.getLogger(__name__)


class AddonCORSMiddleware(CORSMiddleware):
    """CORS for the addon routes; the stream proxy sets its own CORS headers."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].startswith(PROXY_PATH):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use instead of the environment
        transport: httpx transport for all outbound requests (tests)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown events."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}...")

        client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(settings.proxy_timeout_seconds)
        )
        registry = ChannelRegistry(
            ChannelFeedLoader(client, settings.channel_feed_url, settings.feed_timeout_seconds),
            ttl_seconds=settings.channel_cache_ttl_seconds
        )
        app.state.http_client = client
        app.state.registry = registry
        app.state.proxy_service = StreamProxyService(
            UpstreamFetcher(client, settings.proxy_timeout_seconds),
            settings
        )

        if settings.auto_refresh_interval_seconds > 0:
            registry.start_auto_refresh(settings.auto_refresh_interval_seconds)
        else:
            logger.info("Channel auto-refresh disabled, channels load on first request")

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        await registry.stop()
        await client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="NZ Freeview channels for Stremio with an HLS CORS proxy",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.started_at = time.time()

    # Add rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS middleware for the addon routes, /proxy/ answers its own preflights
    app.add_middleware(
        AddonCORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(proxy.router)
    app.include_router(addon.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - app.state.started_at, 1),
            "version": settings.app_version,
        }

    @app.get("/stats")
    async def get_stats(request: Request):
        """Service and channel registry statistics."""
        registry = get_registry(request)
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - app.state.started_at, 1),
            "version": settings.app_version,
            "registry": registry.stats(),
        }

    @app.get("/")
    async def root():
        """Send visitors to the addon manifest."""
        return RedirectResponse("/manifest.json")

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        """Proxy failures are reported to the caller as JSON."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=CORS_HEADERS
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "Internal server error"}
        )

    return app


# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "freeview.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        proxy_headers=True,
        forwarded_allow_ips="*"
    )
