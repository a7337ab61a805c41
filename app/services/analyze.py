import base64
import logging

from openai import AuthenticationError, OpenAI, RateLimitError

from app.core.config import get_openai_keys, settings
from app.services.invoker import CancellationToken
from app.services.line_client import SourceImage
from app.services.timeframes import NO_CONTEXT_TEXT

logger = logging.getLogger(__name__)

# Bir anahtar auth/rate limit verince diğerine geçilecek
OPENAI_FALLBACK_EXCEPTIONS = (AuthenticationError, RateLimitError)


SYSTEM_PROMPT = """Role: Expert Technical Analyst.
Methodology: Strict Top-Down Analysis (Structure -> Value -> Trigger) with Confluence.

{context}

*** HARD RULES (NON-NEGOTIABLE) ***
1) Never trade against the higher timeframe (HTF) trend. If the current TF signals BUY but the parent TFs in the context are clearly Bearish (or SELL vs clearly Bullish), answer "WAIT".
2) Only exception: price at a major HTF key level AND a clear reversal trigger. Label it "Counter-trend (High Risk)" and never give High confidence.
3) Indicators only confirm; they never override market structure.

*** ANALYSIS LOGIC ***
1. PRIORITY 1 Market Structure: identify the TF of the NEW image first, read parent TFs from the context, determine the main bias (HH/HL = Up, LH/LL = Down, else Sideway).
2. PRIORITY 2 Area of Value: major support/resistance, supply/demand, Fibonacci 50.0/61.8. "No Man's Land" => WAIT.
3. PRIORITY 3 Entry Trigger: RSI/MACD/Stoch, volume, candlestick patterns, divergence; confluence only.

*** ACCURACY ***
- If a value cannot be read with confidence, use null or "unknown". Do not guess.
- Fill "reasoning_trace" with concise bullet points referencing PRIORITY 1/2/3 evidence and the decision.
- If a parent TF needed for the decision is missing or stale, list it in "request_update_for_tf".

*** OUTPUT FORMAT (JSON ONLY) ***
{{
  "detected_tf": "e.g. M15",
  "tfs_used_for_confluence": ["H4", "H1", "M15"],
  "request_update_for_tf": [],
  "reasoning_trace": ["P1: ...", "P2: ...", "P3: ...", "Decision: ..."],
  "detailed_technical_data": {{
    "trend_bias": "Bullish/Bearish/Sideway",
    "structure": {{"parent_bias": "...", "market_structure": "...", "notes": ""}},
    "value": {{"at_key_level": true, "key_levels_summary": "", "support_levels": [], "resistance_levels": []}},
    "trigger": {{"candlestick_patterns": [], "divergence": "none", "indicator_snapshot": {{}}}},
    "trade_setup": {{"action": "BUY/SELL/WAIT/HOLD", "entry_zone": null, "target_price": null, "stop_loss": null, "confidence": "High/Medium/Low", "risk_flags": []}},
    "raw_extraction": {{"price_axis_hint": null, "time_axis_hint": null, "notes": ""}}
  }},
  "user_response_text": "Short summary for the user: action, TF, confluence TFs, setup."
}}"""

USER_PROMPT = "Analyze this chart strictly using Top-Down Analysis logic and Hard Rules. Output JSON only."


class OpenAIChartBackend:
    """
    OpenAI Vision ile grafik analizi. Her çağrı kendi istemcisini açar ki iptal
    (client.close) sadece o isteğin bağlantısını kapatsın.
    """

    def __init__(self, model: str | None = None, max_output_tokens: int | None = None):
        self.model = model or settings.openai_model
        self.max_output_tokens = max_output_tokens or settings.ai_max_output_tokens

    def _messages(self, image: SourceImage, context: str) -> list[dict]:
        b64 = base64.standard_b64encode(image.data).decode("utf-8")
        url = f"data:{image.content_type};base64,{b64}"
        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(context=context or NO_CONTEXT_TEXT)},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": url, "detail": "high"}},
                ],
            },
        ]

    def analyze(self, image: SourceImage, context: str, timeout_s: float, cancel: CancellationToken) -> str:
        """
        Modelin ham metin yanıtını döner. AuthenticationError/RateLimitError'da sıradaki
        anahtarla dener; hepsi başarısızsa son hatayı fırlatır.
        """
        return self._create(self._messages(image, context), timeout_s, cancel, self.max_output_tokens)

    def complete_text(
        self, system: str, user: str, timeout_s: float, cancel: CancellationToken | None = None, max_tokens: int = 1200
    ) -> str:
        """Görselsiz metin tamamlama (TRADE_STYLE planı); aynı anahtar yedeklemesi."""
        messages = [{"role": "system", "content": system}, {"role": "user", "content": user}]
        return self._create(messages, timeout_s, cancel or CancellationToken(), max_tokens)

    def _create(self, messages: list[dict], timeout_s: float, cancel: CancellationToken, max_tokens: int) -> str:
        keys = get_openai_keys()
        if not keys:
            raise ValueError("OPENAI_API_KEY tanımlı değil veya geçersiz.")
        last_exc: Exception | None = None
        for key in keys:
            if cancel.cancelled:
                break
            client = OpenAI(api_key=key, timeout=timeout_s, max_retries=0)
            cancel.on_cancel(client.close)
            try:
                response = client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=0.2,
                    max_tokens=max_tokens,
                )
                return response.choices[0].message.content or ""
            except OPENAI_FALLBACK_EXCEPTIONS as e:
                last_exc = e
                logger.warning("OpenAI anahtar atlandı (%s), sıradakine geçiliyor: %s", key[:12] + "...", e)
                continue
            finally:
                client.close()
        if last_exc is not None:
            raise last_exc
        raise TimeoutError("Analysis cancelled before a request was sent")
