"""Timeframe (TF) kuralları: normalize etme, tazelik penceresi, üst TF zinciri ile bağlam seçimi."""
from typing import Any

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# TF başına verinin geçerli sayıldığı süre
TF_VALIDITY_MS: dict[str, int] = {
    "M1": 1 * MINUTE_MS,
    "M5": 5 * MINUTE_MS,
    "M15": 15 * MINUTE_MS,
    "M30": 30 * MINUTE_MS,
    "H1": HOUR_MS,
    "H4": 4 * HOUR_MS,
    "1D": DAY_MS,
    "1W": 7 * DAY_MS,
}

# Büyükten küçüğe (HTF -> LTF)
TF_ORDER: list[str] = ["1W", "1D", "H4", "H1", "M30", "M15", "M5", "M1"]

PARENT_TF_MAP: dict[str, list[str]] = {
    "M1": ["M5", "M15", "H1"],
    "M5": ["M15", "H1", "H4"],
    "M15": ["H1", "H4", "1D"],
    "M30": ["H1", "H4", "1D"],
    "H1": ["H4", "1D"],
    "H4": ["1D", "1W"],
    "1D": ["1W"],
    "1W": [],
}

DEFAULT_CONTEXT_TFS = ["1D", "H4", "H1", "M15"]
UNKNOWN_TF = "UNKNOWN"
_ALIASES = {"D1": "1D", "DAY": "1D", "WEEK": "1W", "HOUR": "H1"}


def normalize_tf(tf: Any) -> str | None:
    """D1/DAY -> 1D, WEEK -> 1W, HOUR -> H1; bilinmeyen etiketler büyük harfle aynen kalır."""
    if tf is None:
        return None
    t = str(tf).strip().upper()
    if not t:
        return None
    return _ALIASES.get(t, t)


def _field(row: Any, name: str, default: Any = None) -> Any:
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def _data(row: Any) -> dict:
    if hasattr(row, "data") and callable(row.data):
        return row.data()
    return _field(row, "data") or {}


def is_analysis_row(row: Any) -> bool:
    """Gerçek analiz satırı mı: işaretçi (_JOB), zaman aşımı yedeği veya TF'si bilinmeyen kayıt değil."""
    tf = normalize_tf(_field(row, "tf")) or ""
    if tf.startswith("_") or tf == UNKNOWN_TF:
        return False
    return not _data(row).get("fallback")


def analysis_rows(rows: list) -> list:
    return [r for r in rows if is_analysis_row(r)]


def latest_analysis_row(rows: list) -> Any | None:
    """Yedek sonuçlar hariç en son kaydedilen analiz."""
    candidates = analysis_rows(rows)
    if not candidates:
        return None
    return max(candidates, key=lambda r: int(_field(r, "timestamp", 0) or 0))


def is_fresh(row: Any, now: int) -> bool:
    """Bilinmeyen TF'ler için süre sınırı yok (her zaman taze)."""
    max_age = TF_VALIDITY_MS.get(normalize_tf(_field(row, "tf")) or "")
    if not max_age:
        return True
    ts = int(_field(row, "timestamp", 0) or 0)
    return (now - ts) <= max_age


def enrich_with_freshness(rows: list, now: int) -> list[dict]:
    """STATUS cevabı ve API için: tf, yaş (dk), taze mi, çözülmüş veri."""
    out = []
    for r in rows:
        ts = int(_field(r, "timestamp", 0) or 0)
        age_ms = now - ts if ts else None
        data = r.data() if hasattr(r, "data") else (_field(r, "data") or {})
        out.append(
            {
                "tf": normalize_tf(_field(r, "tf")),
                "timestamp": ts,
                "timestamp_readable": _field(r, "timestamp_readable"),
                "age_minutes": (age_ms // MINUTE_MS) if age_ms is not None else None,
                "is_fresh": is_fresh(r, now) if ts else False,
                "data": data,
            }
        )
    return out


def infer_likely_current_tf(rows: list) -> str | None:
    """En son güncellenen TF; yeni görselin muhtemelen aynı TF olduğu varsayılır."""
    latest = latest_analysis_row(rows)
    return normalize_tf(_field(latest, "tf")) if latest is not None else None


def _tf_rank(tf: str | None) -> int:
    return TF_ORDER.index(tf) if tf in TF_ORDER else len(TF_ORDER)


def select_context_rows(valid_rows: list, likely_tf: str | None) -> list:
    """Gürültüyü azaltmak için sadece üst TF zinciri; eşleşme yoksa en yeni 3 kayıt."""
    if not valid_rows:
        return []
    if likely_tf and likely_tf in PARENT_TF_MAP:
        wanted = {normalize_tf(p) for p in PARENT_TF_MAP[likely_tf]}
    else:
        wanted = set(DEFAULT_CONTEXT_TFS)
    selected = [r for r in valid_rows if normalize_tf(_field(r, "tf")) in wanted]
    if not selected:
        return sorted(valid_rows, key=lambda r: int(_field(r, "timestamp", 0) or 0), reverse=True)[:3]
    return sorted(selected, key=lambda r: _tf_rank(normalize_tf(_field(r, "tf"))))


NO_CONTEXT_TEXT = "No valid higher timeframe data available."


def build_context_text(rows: list, now: int) -> str:
    """Sadece taze satırlar, üst TF zinciri; prompt'a girecek bağlam metni."""
    valid = [r for r in analysis_rows(rows) if is_fresh(r, now)]
    likely_tf = infer_likely_current_tf(valid)
    selected = select_context_rows(valid, likely_tf)
    if not selected:
        return NO_CONTEXT_TEXT
    lines = [
        "=== VALID EXISTING DATA (SMART CONTEXT: PARENT TFs ONLY) ===",
        f"Context selection based on last-updated TF: {likely_tf or 'Unknown'}",
        "--------------------------------",
    ]
    for row in selected:
        data = _data(row)
        setup = data.get("trade_setup") or {}
        levels = (data.get("value") or {}).get("key_levels_summary") or (data.get("key_levels") or {}).get("summary")
        age_mins = max(0, (now - int(_field(row, "timestamp", 0) or 0)) // MINUTE_MS)
        lines += [
            f"[TF: {normalize_tf(_field(row, 'tf'))}]",
            f"- Updated: {age_mins} mins ago",
            f"- Trend Bias: {data.get('trend_bias') or 'Unknown'}",
            f"- Setup Action: {setup.get('action') or 'N/A'}",
            f"- Entry Zone: {setup.get('entry_zone') or 'N/A'}",
            f"- Key Levels: {levels or 'N/A'}",
            "--------------------------------",
        ]
    return "\n".join(lines)
