"""
Kendi kendini tetikleme: /internal/analyze'a fire-and-forget POST.

Gönderim paylaşılan, daemon olmayan bir thread havuzunda yapılır; çağıran beklemez.
Yorumlayıcı çıkışta havuzu join eder, lifespan kapanışında da shutdown(wait=True)
çağrılır, böylece çağrı süreçten çıkmadan iptal edilmez.
"""
import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

INTERNAL_ANALYZE_PATH = "/internal/analyze"
INTERNAL_TOKEN_HEADER = "X-Internal-Task-Token"

_dispatch_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="self-trigger")


def shutdown_dispatch_pool(wait: bool = True) -> None:
    _dispatch_pool.shutdown(wait=wait)


class SelfTrigger:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.url = base_url.rstrip("/") + INTERNAL_ANALYZE_PATH
        self.token = token
        self.timeout = timeout
        self._executor = executor or _dispatch_pool

    def fire(self, user_id: str) -> Future | None:
        """Gönderimi planlar ve hemen döner; sonuç sadece hata durumunda loglanır."""
        try:
            return self._executor.submit(self._post, user_id)
        except RuntimeError as e:
            # Havuz kapanmışsa (uygulama iniyor) zincir bir sonraki istekte devam eder
            logger.warning("Internal analyze trigger not dispatched for user=%s: %s", user_id, e)
            return None

    def _post(self, user_id: str) -> int | None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers[INTERNAL_TOKEN_HEADER] = self.token
        req = Request(
            self.url,
            data=json.dumps({"user_id": user_id}).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as r:
                return r.status
        except HTTPError as e:
            body = ""
            try:
                body = e.read().decode("utf-8", errors="replace")[:120]
            except OSError:
                pass
            logger.error("Internal analyze trigger failed: HTTP %s %s", e.code, body)
            return e.code
        except (URLError, OSError) as e:
            logger.error("Internal analyze trigger failed: %s", e)
            return None
