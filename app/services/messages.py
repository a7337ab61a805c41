"""LINE yanıt metinleri: kuyruk onayı, STATUS özeti, yardım."""
from app.services.estimator import AckEstimate, format_duration
from app.services.job_store import QueueStats
from app.services.timeframes import TF_ORDER

HELP_TEXT = (
    "📈 Grafik görseli gönderin, analiz sıraya alınır.\n"
    "Komutlar:\n"
    "• STATUS: kayıtlı TF'ler ve kuyruk durumu\n"
    "• SUMMARY: özet için TF listesi; SUMMARY_TF:<TF>: o TF'nin kurulumu\n"
    "• TRADE_STYLE:SCALP veya TRADE_STYLE:SWING: kayıtlı verilerden işlem planı\n"
    "• DEL_EXEC:<TF>: bir TF kaydını sil\n"
    "• CHANGE_TF:<ESKİ>:TO:<YENİ>: TF etiketini düzelt"
)


def short_ref(source_ref: str) -> str:
    s = str(source_ref or "")
    return s if len(s) <= 6 else "…" + s[-6:]


def build_ack_text(source_ref: str, est: AckEstimate) -> str:
    lines = [
        f"📥 Görsel alındı ({short_ref(source_ref)}), analiz sırasına eklendi.",
        f"Sıra: {est.position}/{est.total_pending}",
    ]
    if est.position > 1:
        lines.append(f"Başlama tahmini: ~{format_duration(est.eta_start_seconds)}")
    lines.append(f"Tamamlanma tahmini: ~{format_duration(est.eta_done_seconds)}")
    lines.append("Sonuç hazır olunca STATUS ile görebilirsiniz.")
    return "\n".join(lines)


def build_status_text(enriched_rows: list[dict], stats: QueueStats) -> str:
    lines = ["📊 Kayıtlı analizler:"]
    if not enriched_rows:
        lines.append("Henüz kayıt yok.")
    for row in enriched_rows:
        action = (row["data"].get("trade_setup") or {}).get("action") or "N/A"
        fresh = "✅ güncel" if row["is_fresh"] else "⌛ eski"
        age = f"{row['age_minutes']} dk önce" if row["age_minutes"] is not None else "zaman bilinmiyor"
        lines.append(f"• {row['tf']}: {action} ({fresh}, {age})")
    lines.append(f"Kuyruk: {stats.queued_count} bekleyen, {stats.processing_count} işleniyor")
    return "\n".join(lines)


NO_ANALYSES_TEXT = "Henüz kayıtlı analiz yok.\n📸 Önce bir grafik görseli gönderin."

TRADE_STYLE_MENU_TEXT = (
    "⚡ İşlem planı modu seçin (kayıtlı en güncel grafik verileri kullanılır):\n"
    "• TRADE_STYLE:SCALP: kısa vade, tetik küçük TF'den, yön büyük TF'den\n"
    "• TRADE_STYLE:SWING: H4/1D yapısı, tetik H1/M30'dan"
)


def build_summary_menu_text(enriched_rows: list[dict]) -> str:
    """Kayıtlı TF'ler büyükten küçüğe; her biri için SUMMARY_TF komutu."""
    order = {tf: i for i, tf in enumerate(TF_ORDER)}
    tfs = sorted({row["tf"] for row in enriched_rows if row["tf"]}, key=lambda tf: order.get(tf, len(TF_ORDER)))
    lines = ["📌 Özetini görmek istediğiniz TF'yi seçin:"]
    for tf in tfs:
        fresh = next(row["is_fresh"] for row in enriched_rows if row["tf"] == tf)
        lines.append(f"• SUMMARY_TF:{tf} {'✅' if fresh else '⌛'}")
    return "\n".join(lines)


def tf_setup_summary(data: dict) -> dict:
    setup = data.get("trade_setup") or {}
    trace = data.get("reasoning_trace") or []
    if isinstance(trace, list) and trace:
        summary = str(trace[-1])
    elif data.get("notes"):
        summary = str(data["notes"])
    else:
        summary = "-"
    return {
        "entry": setup.get("entry_zone") or "-",
        "tp": setup.get("target_price") or "-",
        "sl": setup.get("stop_loss") or "-",
        "summary": summary,
    }


def build_tf_summary_text(row: dict) -> str:
    """enrich_with_freshness satırından tek TF özeti."""
    s = tf_setup_summary(row["data"])
    age = f"~{row['age_minutes']} dk" if row["age_minutes"] is not None else "bilinmiyor"
    fresh = "✅ güncel" if row["is_fresh"] else "⌛ eski"
    return (
        f"📌 TF {row['tf']} analiz özeti\n\n"
        f"🎯 Kurulum:\n- Giriş: {s['entry']}\n- TP: {s['tp']}\n- SL: {s['sl']}\n\n"
        f"💡 Özet: {s['summary']}\n\n"
        f"🕒 Güncelleme: {row['timestamp_readable'] or '-'} ({age}, {fresh})"
    )


def build_missing_tfs_text(mode: str, missing: list[str]) -> str:
    ask = ", ".join(missing)
    return (
        f"❌ {mode} planı için gerekli TF verisi eksik: {ask}\n"
        f"📸 Önce {ask} grafiğini gönderip güncelleyin."
    )
