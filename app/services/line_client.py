"""LINE Messaging API: mesaj içeriği (görsel) indirme ve reply gönderme."""
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel

logger = logging.getLogger(__name__)

LINE_CONTENT_URL = "https://api-data.line.me/v2/bot/message/{message_id}/content"
LINE_REPLY_URL = "https://api.line.me/v2/bot/message/reply"
LINE_TEXT_MAX = 5000  # LINE tek mesaj limiti


class SourceImage(BaseModel):
    data: bytes
    content_type: str = "image/jpeg"


class SourceFetchError(Exception):
    """Kaynak görsel indirilemedi (HTTP hata, ağ hatası, boş içerik)."""


class LineClient:
    def __init__(self, access_token: str, timeout: float = 15.0):
        self.access_token = access_token
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def fetch_content(self, message_id: str) -> SourceImage:
        """Tekrar deneme yok; deneme politikası işleyicinin."""
        req = Request(LINE_CONTENT_URL.format(message_id=message_id), headers=self._headers(), method="GET")
        try:
            with urlopen(req, timeout=self.timeout) as r:
                data = r.read()
                content_type = r.headers.get("Content-Type") or "image/jpeg"
        except HTTPError as e:
            raise SourceFetchError(f"LINE content error: HTTP {e.code}") from e
        except (URLError, OSError) as e:
            raise SourceFetchError(f"LINE content error: {e}") from e
        if not data:
            raise SourceFetchError("LINE content error: empty body")
        return SourceImage(data=data, content_type=content_type.split(";")[0].strip())

    def reply_text(self, reply_token: str, text: str) -> bool:
        """Best-effort; hata loglanır, yukarı fırlatılmaz."""
        body = {"replyToken": reply_token, "messages": [{"type": "text", "text": text[:LINE_TEXT_MAX]}]}
        req = Request(
            LINE_REPLY_URL,
            data=json.dumps(body).encode("utf-8"),
            headers={**self._headers(), "Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as r:
                r.read()
            return True
        except HTTPError as e:
            logger.warning("LINE reply failed: HTTP %s", e.code)
        except (URLError, OSError) as e:
            logger.warning("LINE reply failed: %s", e)
        return False
