"""Per-client request quota for the HTTP endpoints."""

from __future__ import annotations

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import get_settings

settings = get_settings()


def get_client_ip(request: Request) -> str:
    """Client address, honouring the headers set by reverse proxies."""

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.rate_limit_enabled,
    headers_enabled=False,
)
