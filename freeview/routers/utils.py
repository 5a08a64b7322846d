"""
Helpers shared by the routers.
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from freeview.config import get_settings

# Rate limiter (addon endpoints only)
limiter = Limiter(key_func=get_remote_address)


def addon_rate_limit() -> str:
    return f"{get_settings().rate_limit_per_minute}/minute"


def get_addon_base(request: Request) -> str:
    """
    Externally visible base URL of this service, without trailing slash.

    A configured public URL wins; otherwise forwarded headers from a reverse
    proxy are honoured before falling back to the request's own base URL.
    """
    settings = request.app.state.settings
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")

    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        proto = request.headers.get("x-forwarded-proto", request.url.scheme)
        return f"{proto.split(',')[0].strip()}://{forwarded_host.split(',')[0].strip()}"

    return str(request.base_url).rstrip("/")
