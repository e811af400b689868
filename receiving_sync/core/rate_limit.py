"""Shared rate limiter instance for use across route files."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from receiving_sync.core.config import settings


def get_device_or_ip(request: Request) -> str:
    """Rate limit by handheld device when it identifies itself, else by IP."""
    device_id = request.headers.get("X-Device-ID", "").strip()
    if device_id:
        return f"device:{device_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_device_or_ip, enabled=settings.rate_limit_enabled)
