from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import BaseSettings

# .env proje kökünde: app/core/config.py -> app/core -> app -> kök
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

# OpenAI anahtarının geçerli sayılması için (başında boşluk vb. olmaması)
OPENAI_KEY_PREFIX = "sk-"

# Serverless kökenli alt sınırlar: bunların altı pratikte her analizi timeout yapar
MIN_ANALYSIS_TIMEOUT_MS = 8000
MIN_EST_SECONDS_PER_IMAGE = 10


class Settings(BaseSettings):
    openai_api_key: str = ""
    # Birden fazla anahtar: virgülle ayrılmış. Biri bozulunca/limit dolunca sıradakine geçilir.
    openai_api_keys: str = ""
    openai_model: str = "gpt-4o-mini"
    ai_max_output_tokens: int = 1800
    database_url: str = "sqlite:///./chartline.db"
    # CORS: virgülle ayrılmış origin listesi
    cors_origins: str = "*"
    # IP başına dakikada max istek (sorgu endpoint'leri)
    rate_limit_per_minute: int = 60
    # LINE Messaging API
    line_channel_secret: str = ""
    line_channel_access_token: str = ""
    # /internal/analyze için paylaşılan sır (X-Internal-Task-Token). Boşsa kontrol yapılmaz.
    internal_task_token: str = ""
    # Kendi kendini tetikleme adresi; boşsa gelen isteğin base URL'i kullanılır
    internal_base_url: str = ""
    admin_secret: str = ""  # /admin/* JSON uçları için X-Admin-Secret
    # Kuyruk / işleyici ayarları
    analysis_timeout_ms: int = 28000
    invocation_budget_ms: int = 40000  # Tek çağrının toplam süre bütçesi
    headroom_ratio: float = 0.25       # Bütçenin DB yazımı + zincir tetikleme için ayrılan kısmı
    max_attempts: int = 3
    recovery_cap: int = 2              # Timeout sonrası aynı çağrı içindeki kurtarma denemesi
    cache_ttl_seconds: int = 7 * 24 * 3600
    prune_keep_count: int = 5
    est_seconds_per_image: int = 45
    display_timezone: str = "Asia/Bangkok"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator(
        "openai_api_key",
        "openai_api_keys",
        "line_channel_secret",
        "line_channel_access_token",
        "internal_task_token",
        "admin_secret",
        mode="before",
    )
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Boşluk/yanlış kopya kaynaklı hataları azaltır."""
        return (v or "").strip()

    @field_validator("internal_base_url", mode="before")
    @classmethod
    def strip_base_url(cls, v: str | None) -> str:
        return (v or "").strip().rstrip("/")

    @field_validator("analysis_timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        return max(MIN_ANALYSIS_TIMEOUT_MS, v)

    @field_validator("headroom_ratio")
    @classmethod
    def clamp_headroom(cls, v: float) -> float:
        return min(0.9, max(0.2, v))

    @field_validator("max_attempts", "prune_keep_count")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(1, v)

    @field_validator("recovery_cap")
    @classmethod
    def non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("est_seconds_per_image")
    @classmethod
    def clamp_estimate(cls, v: int) -> int:
        return max(MIN_EST_SECONDS_PER_IMAGE, v)


settings = Settings()


class ProcessorConfig(BaseModel):
    """İşleyiciye verilen değişmez ayar seti; çekirdek kod settings'e doğrudan bakmaz."""

    model_config = ConfigDict(frozen=True)

    analysis_timeout_ms: int = 28000
    invocation_budget_ms: int = 40000
    headroom_ratio: float = 0.25
    max_attempts: int = 3
    recovery_cap: int = 2
    cache_ttl_seconds: int = 7 * 24 * 3600
    prune_keep_count: int = 5
    est_seconds_per_image: int = 45
    display_timezone: str = "Asia/Bangkok"

    @property
    def usable_budget_ms(self) -> int:
        """Çağrı bütçesinin headroom düşülmüş kısmı; tüm analiz çağrıları bunun içinde kalır."""
        return int(self.invocation_budget_ms * (1 - self.headroom_ratio))

    @property
    def analysis_deadline_ms(self) -> int:
        return max(1, min(self.analysis_timeout_ms, self.usable_budget_ms))

    @property
    def recovery_deadline_ms(self) -> int:
        return max(1, self.analysis_deadline_ms // 2)

    @classmethod
    def from_settings(cls, s: Settings) -> "ProcessorConfig":
        return cls(
            analysis_timeout_ms=s.analysis_timeout_ms,
            invocation_budget_ms=s.invocation_budget_ms,
            headroom_ratio=s.headroom_ratio,
            max_attempts=s.max_attempts,
            recovery_cap=s.recovery_cap,
            cache_ttl_seconds=s.cache_ttl_seconds,
            prune_keep_count=s.prune_keep_count,
            est_seconds_per_image=s.est_seconds_per_image,
            display_timezone=s.display_timezone,
        )


def get_openai_keys() -> list[str]:
    """
    Geçerli OpenAI anahtarlarını döner (sk- ile başlayan, boşluksuz).
    OPENAI_API_KEYS varsa virgülle ayrılmış liste; yoksa OPENAI_API_KEY tek eleman.
    """
    keys_raw = (settings.openai_api_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip() and k.strip().startswith(OPENAI_KEY_PREFIX)]
        if keys:
            return keys
    single = (settings.openai_api_key or "").strip()
    if single and single.startswith(OPENAI_KEY_PREFIX):
        return [single]
    return []


def is_openai_configured() -> bool:
    """En az bir geçerli OpenAI anahtarı var mı?"""
    return len(get_openai_keys()) > 0
