from fastapi import Request

from app.core.config import settings


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from a trusted proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"
