"""
TRADE_STYLE komutu: kayıtlı analizlerden SCALP / SWING işlem planı.

Görsel yok; sadece veritabanındaki taze TF kayıtları bağlam olarak modele verilir.
"""
import json
import logging
from typing import Protocol

from app.services.invoker import parse_json_loosely
from app.services.timeframes import TF_ORDER, normalize_tf, select_context_rows

logger = logging.getLogger(__name__)

TRADE_STYLE_MODES = ("SCALP", "SWING")

# Güvenli bir plan için mod başına olmazsa olmaz TF'ler
CRITICAL_TFS: dict[str, list[str]] = {"SCALP": ["H1"], "SWING": ["1D", "H4"]}

MODE_LABELS = {"SCALP": "Kısa vade (Scalp)", "SWING": "Swing"}

TRADE_STYLE_PROMPT = """Role: Expert Technical Analyst.
Task: Create a trading plan for mode = "{mode}" using ONLY the DB context provided.
Methodology: Strict Top-Down (Structure -> Value -> Trigger) + Confluence.

{context}

*** HARD RULES (MUST FOLLOW) ***
1) Direction follows the higher TF (1D/H4) first.
2) No counter-trend trades, except at a clearly major support/resistance or key Fib zone; label it "Counter-trend (Risky)" and reduce confidence.
3) Price in No Man's Land => action = WAIT.
4) Indicators only confirm; they never set direction.
5) Use only what exists in the DB context. If a critical TF is missing, list it in request_update_for_tf.

*** MODE-SPECIFIC GUIDANCE ***
- SCALP: precise trigger on the lower TF, tight invalidation, quick TP; still filtered by the HTF bias.
- SWING: HTF structure/value first; wider TP; trigger from H1/M30.

*** OUTPUT FORMAT (JSON ONLY) ***
{{
  "mode": "SCALP|SWING",
  "tfs_used_for_confluence": ["1D", "H4", "H1", "M15"],
  "request_update_for_tf": [],
  "reasoning_trace": ["P1 Structure: ...", "P2 Value: ...", "P3 Trigger: ..."],
  "trade_plan": {{"action": "BUY|SELL|WAIT|HOLD", "entry_zone": "...", "target_price": "...", "stop_loss": "...", "confidence": "High|Medium|Low"}},
  "risk_notes": ["..."],
  "user_response_text": "Short summary for the user: mode, action, TFs used, entry/TP/SL, risk."
}}"""

USER_PROMPT = "Create the {mode} plan from the DB context. Output JSON only."


class TextBackend(Protocol):
    def complete_text(self, system: str, user: str, timeout_s: float) -> str: ...


def _tf(row) -> str | None:
    return normalize_tf(row.get("tf") if isinstance(row, dict) else getattr(row, "tf", None))


def _ts(row) -> int:
    value = row.get("timestamp") if isinstance(row, dict) else getattr(row, "timestamp", 0)
    return int(value or 0)


def pick_most_recent_row_by_tf(rows: list, candidate_tfs: list[str]):
    wanted = {normalize_tf(t) for t in candidate_tfs}
    matches = [r for r in rows if _tf(r) in wanted]
    return max(matches, key=_ts) if matches else None


def select_rows_for_trade_style(valid_rows: list, mode: str) -> list:
    """Moda göre TF seçimi; sonuç büyük TF'den küçüğe sıralı."""
    by_tf = {_tf(r): r for r in valid_rows}
    picked: dict[str, object] = {}

    def add(row) -> None:
        if row is not None and _tf(row):
            picked[_tf(row)] = row

    if mode == "SCALP":
        ltf = pick_most_recent_row_by_tf(valid_rows, ["M1", "M5", "M15", "M30"])
        add(ltf)
        for r in select_context_rows(valid_rows, _tf(ltf) if ltf is not None else "M5"):
            add(r)
        # H1 varsa gürültüyü filtreler
        add(by_tf.get("H1"))
    elif mode == "SWING":
        for tf in ("1D", "H4", "1W"):
            add(by_tf.get(tf))
        add(pick_most_recent_row_by_tf(valid_rows, ["H1", "M30", "M15"]))
    else:
        for r in select_context_rows(valid_rows, "M15"):
            add(r)

    order = {tf: i for i, tf in enumerate(TF_ORDER)}
    return sorted(picked.values(), key=lambda r: order.get(_tf(r), len(TF_ORDER)))


def missing_critical_tfs(selected: list, mode: str) -> list[str]:
    present = {_tf(r) for r in selected}
    return [tf for tf in CRITICAL_TFS.get(mode, []) if tf not in present]


def build_trade_style_context(enriched: list[dict], mode: str) -> str:
    """enrich_with_freshness çıktısından kısa bağlam; token tasarrufu için alanlar kırpılır."""
    lines = [f"=== DB CONTEXT FOR {mode} (Selected TFs Only / Smart Context) ==="]
    for x in enriched:
        d = x.get("data") or {}
        state = "Fresh" if x.get("is_fresh") else "Stale"
        lines += [
            f"[TF {x['tf']}] {state} | Age={x.get('age_minutes')}m | Updated={x.get('timestamp_readable') or '-'}",
            f"- TrendBias: {d.get('trend_bias') or '-'}",
            f"- Structure: {json.dumps(d.get('structure') or {}, ensure_ascii=False)[:380]}",
            f"- Value: {json.dumps(d.get('value') or {}, ensure_ascii=False)[:380]}",
            f"- Trigger: {json.dumps(d.get('trigger') or {}, ensure_ascii=False)[:380]}",
            f"- Indicators: {json.dumps(d.get('indicators') or {}, ensure_ascii=False)[:380]}",
            f"- Setup: {json.dumps(d.get('trade_setup') or {}, ensure_ascii=False)[:380]}",
            "---",
        ]
    return "\n".join(lines)


class TradeStylePlanner:
    def __init__(self, backend: TextBackend, timeout_s: float = 28.0):
        self.backend = backend
        self.timeout_s = timeout_s

    def plan(self, mode: str, context: str) -> str:
        """Modelin user_response_text alanı; yoksa plan alanlarından kısa özet."""
        raw = self.backend.complete_text(
            TRADE_STYLE_PROMPT.format(mode=mode, context=context), USER_PROMPT.format(mode=mode), self.timeout_s
        )
        payload = parse_json_loosely(raw)
        text = payload.get("user_response_text")
        if text:
            return str(text)
        plan = payload.get("trade_plan") or {}
        logger.info("Trade style %s plan had no user_response_text", mode)
        return (
            f"⚡ Mod: {MODE_LABELS.get(mode, mode)}\n"
            f"📢 Durum: {plan.get('action') or 'WAIT'} ({plan.get('confidence') or '-'})\n"
            f"- Giriş: {plan.get('entry_zone') or '-'}\n"
            f"- TP: {plan.get('target_price') or '-'}\n"
            f"- SL: {plan.get('stop_loss') or '-'}"
        )
