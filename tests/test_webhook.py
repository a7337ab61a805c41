"""POST /webhook/line: imza, görsel kuyruğa alma, metin komutları."""
import json

from fastapi.testclient import TestClient

from app.core.clock import now_ms
from app.core.security import line_signature
from app.models.analysis_job import JOB_QUEUED
from app.schemas.analysis import ChartAnalysis
from app.services.job_store import JobStore, make_job_id
from app.services.result_store import ResultStore

SECRET = "test-line-secret"


def _event(message: dict, user_id: str = "U1", reply_token: str = "rt-1") -> dict:
    return {
        "type": "message",
        "replyToken": reply_token,
        "source": {"type": "user", "userId": user_id},
        "message": message,
    }


def _post(client: TestClient, events: list[dict], secret: str = SECRET):
    body = json.dumps({"destination": "bot", "events": events}).encode("utf-8")
    return client.post(
        "/webhook/line",
        content=body,
        headers={"X-Line-Signature": line_signature(body, secret), "Content-Type": "application/json"},
    )


def test_bad_signature_is_401(client: TestClient):
    r = _post(client, [], secret="other-secret")
    assert r.status_code == 401


def test_missing_signature_is_401(client: TestClient):
    r = client.post("/webhook/line", json={"events": []})
    assert r.status_code == 401


def test_missing_channel_secret_is_500(client: TestClient, monkeypatch):
    monkeypatch.setattr("app.api.webhook.settings.line_channel_secret", "")
    assert _post(client, []).status_code == 500


def test_image_is_enqueued_acked_and_triggered(client: TestClient, engine, line_client, trigger):
    r = _post(client, [_event({"id": "m-100", "type": "image"})])
    assert r.status_code == 200
    job = JobStore(engine).get(make_job_id("U1", "m-100"))
    assert job is not None and job.status == JOB_QUEUED
    [(token, text)] = line_client.replies
    assert token == "rt-1"
    assert "Sıra: 1/1" in text
    assert trigger.fired == ["U1"]


def test_duplicate_image_event_is_one_job(client: TestClient, engine):
    _post(client, [_event({"id": "m-1", "type": "image"})])
    _post(client, [_event({"id": "m-1", "type": "image"})])
    assert JobStore(engine).pending_total("U1") == 1


def test_status_command(client: TestClient, engine, line_client):
    ResultStore(engine).save("U1", "H4", 0, "-", ChartAnalysis(detected_tf="H4", trade_setup={"action": "SELL"}).to_storage())
    _post(client, [_event({"id": "t1", "type": "text", "text": "STATUS"})])
    [(_, text)] = line_client.replies
    assert "H4: SELL" in text
    assert "Kuyruk: 0 bekleyen" in text


def test_delete_command(client: TestClient, engine, line_client):
    store = ResultStore(engine)
    store.save("U1", "1D", 0, "-", {"detected_tf": "1D"})
    _post(client, [_event({"id": "t1", "type": "text", "text": "DEL_EXEC:D1"})])
    assert store.get("U1", "1D") is None
    assert "1D" in line_client.replies[0][1]


def test_change_tf_command(client: TestClient, engine, line_client):
    store = ResultStore(engine)
    store.save("U1", "H1", 5, "-", {"detected_tf": "H1"})
    _post(client, [_event({"id": "t1", "type": "text", "text": "CHANGE_TF:H1:TO:H4"})])
    assert store.get("U1", "H1") is None
    assert store.get("U1", "H4").data()["detected_tf"] == "H4"


def test_unknown_text_gets_help(client: TestClient, line_client):
    _post(client, [_event({"id": "t1", "type": "text", "text": "hello"})])
    assert "STATUS" in line_client.replies[0][1]


def test_non_message_events_are_ignored(client: TestClient, line_client, trigger):
    r = _post(client, [{"type": "follow", "replyToken": "rt", "source": {"type": "user", "userId": "U1"}}])
    assert r.status_code == 200
    assert line_client.replies == []
    assert trigger.fired == []


def _text(client: TestClient, text: str) -> None:
    _post(client, [_event({"id": "t1", "type": "text", "text": text})])


def test_summary_lists_stored_tfs_high_first(client: TestClient, engine, line_client):
    store = ResultStore(engine)
    store.save("U1", "H1", now_ms(), "-", {"detected_tf": "H1"})
    store.save("U1", "1D", now_ms(), "-", {"detected_tf": "1D"})
    store.save_marker("U1", {"status": "idle"})
    _text(client, "SUMMARY")
    text = line_client.replies[0][1]
    assert text.index("SUMMARY_TF:1D") < text.index("SUMMARY_TF:H1")
    assert "_JOB" not in text


def test_summary_without_analyses(client: TestClient, line_client):
    _text(client, "SUMMARY")
    assert "Henüz kayıtlı analiz yok" in line_client.replies[0][1]


def test_summary_tf_shows_setup(client: TestClient, engine, line_client):
    analysis = ChartAnalysis(
        detected_tf="H4",
        trade_setup={"action": "BUY", "entry_zone": "2310-2315", "target_price": "2340", "stop_loss": "2298"},
        reasoning_trace=["P1: up", "Decision: BUY"],
    )
    ResultStore(engine).save("U1", "H4", now_ms(), "2024-01-01 10:00", analysis.to_storage())
    _text(client, "SUMMARY_TF:h4")
    text = line_client.replies[0][1]
    assert "TF H4" in text
    assert "Giriş: 2310-2315" in text
    assert "SL: 2298" in text
    assert "Özet: Decision: BUY" in text
    assert "güncel" in text


def test_summary_tf_missing_row(client: TestClient, line_client):
    _text(client, "SUMMARY_TF:M15")
    assert "M15 için kayıt yok" in line_client.replies[0][1]


def test_trade_style_without_mode_shows_menu(client: TestClient, line_client):
    _text(client, "TRADE_STYLE")
    assert "TRADE_STYLE:SCALP" in line_client.replies[0][1]


def test_trade_style_reports_missing_critical_tfs(client: TestClient, engine, line_client, text_backend):
    ResultStore(engine).save("U1", "H4", now_ms(), "-", {"detected_tf": "H4"})
    _text(client, "TRADE_STYLE:SWING")
    assert "eksik: 1D" in line_client.replies[0][1]
    assert text_backend.prompts == []


def test_trade_style_plan_uses_fresh_stored_rows(client: TestClient, engine, line_client, text_backend):
    store = ResultStore(engine)
    store.save("U1", "1D", now_ms(), "-", ChartAnalysis(detected_tf="1D", trend_bias="Bullish").to_storage())
    store.save("U1", "H4", now_ms(), "-", ChartAnalysis(detected_tf="H4", trend_bias="Bullish").to_storage())
    store.save("U1", "H1", 0, "-", ChartAnalysis(detected_tf="H1", trend_bias="Bearish").to_storage())
    _text(client, "TRADE_STYLE:swing")
    assert line_client.replies[0][1] == "PLAN: WAIT"
    [prompt] = text_backend.prompts
    assert "[TF 1D]" in prompt and "[TF H4]" in prompt
    # Bayat H1 kaydı bağlama girmez
    assert "[TF H1]" not in prompt


def test_trade_style_model_failure_is_reported(client: TestClient, engine, line_client, text_backend):
    text_backend.text = "cannot help"
    store = ResultStore(engine)
    store.save("U1", "H1", now_ms(), "-", {"detected_tf": "H1"})
    _text(client, "TRADE_STYLE:SCALP")
    assert "oluşturulamadı" in line_client.replies[0][1]


def test_marker_tf_cannot_be_deleted(client: TestClient, engine, line_client):
    store = ResultStore(engine)
    store.save_marker("U1", {"status": "idle"})
    _text(client, "DEL_EXEC:_JOB")
    assert store.get_marker("U1")["status"] == "idle"
    assert "değiştirilemez" in line_client.replies[0][1]


def test_analysis_cannot_be_moved_into_marker_tf(client: TestClient, engine, line_client):
    store = ResultStore(engine)
    store.save("U1", "H4", 5, "-", {"detected_tf": "H4"})
    _text(client, "CHANGE_TF:H4:TO:_JOB")
    assert store.get("U1", "H4") is not None
    assert store.get_marker("U1") is None
    assert store.update_tf("U1", "H4", "_JOB") is False
