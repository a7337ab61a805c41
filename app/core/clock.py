"""Zaman yardımcıları: tüm iş zaman damgaları epoch milisaniye (int)."""
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_ms() -> int:
    return int(time.time() * 1000)


def readable(ms: int, tz_name: str = "Asia/Bangkok") -> str:
    """Kullanıcıya gösterilecek zaman; bilinmeyen timezone'da UTC."""
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    return datetime.fromtimestamp(ms / 1000, tz).strftime("%d.%m.%Y %H:%M:%S")
