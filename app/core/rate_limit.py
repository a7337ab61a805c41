"""Sorgu endpoint'leri için rate limiting (SlowAPI); kullanıcı + IP bazlı, proxy destekli."""
from fastapi import Request

from slowapi import Limiter

from .config import settings

RATE_LIMIT_STR = f"{settings.rate_limit_per_minute}/minute"


def _get_client_ip(request: Request) -> str:
    """Proxy arkasında gerçek istemci IP (X-Forwarded-For ilk eleman)."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def _user_and_ip_key(request: Request) -> str:
    """Path'te user_id varsa kullanıcı başına ayrı kova; yoksa sadece IP."""
    user_id = (request.path_params or {}).get("user_id")
    ip = _get_client_ip(request)
    return f"{user_id}:{ip}" if user_id else ip


limiter = Limiter(key_func=_user_and_ip_key)
