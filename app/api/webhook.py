"""
POST /webhook/line: LINE Messaging API webhook.

İmza doğrulandıktan sonra 200 döner; olaylar yanıttan sonra işlenir.
Görsel: enqueue -> ETA -> onay mesajı -> self-trigger.
Metin: STATUS / SUMMARY / SUMMARY_TF / TRADE_STYLE / DEL_EXEC / CHANGE_TF / yardım.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request
from openai import OpenAIError
from pydantic import ValidationError

from app.api.deps import (
    get_estimator,
    get_job_store,
    get_line_client,
    get_result_store,
    get_trade_planner,
    get_trigger,
)
from app.core.clock import now_ms
from app.core.config import settings
from app.core.errors import StoreUnavailable
from app.core.security import verify_line_signature
from app.models.analysis_log import MARKER_PREFIX
from app.schemas.line import LineEvent, LineWebhookBody
from app.services.estimator import ProgressEstimator
from app.services.invoker import MalformedPayload
from app.services.job_store import JobStore
from app.services.line_client import LineClient
from app.services.messages import (
    HELP_TEXT,
    NO_ANALYSES_TEXT,
    TRADE_STYLE_MENU_TEXT,
    build_ack_text,
    build_missing_tfs_text,
    build_status_text,
    build_summary_menu_text,
    build_tf_summary_text,
)
from app.services.result_store import ResultStore
from app.services.timeframes import analysis_rows, enrich_with_freshness, is_fresh, normalize_tf
from app.services.trade_style import (
    TRADE_STYLE_MODES,
    TradeStylePlanner,
    build_trade_style_context,
    missing_critical_tfs,
    select_rows_for_trade_style,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


class LineEventHandler:
    def __init__(
        self,
        jobs: JobStore,
        results: ResultStore,
        estimator: ProgressEstimator,
        line: LineClient,
        trigger,
        planner: TradeStylePlanner | None = None,
    ):
        self.jobs = jobs
        self.results = results
        self.estimator = estimator
        self.line = line
        self.trigger = trigger
        self.planner = planner

    def handle_all(self, events: list[LineEvent]) -> None:
        for event in events:
            try:
                self.handle(event)
            except StoreUnavailable as e:
                logger.error("LINE event dropped (store unavailable): %s", e)
                if event.reply_token:
                    self.line.reply_text(event.reply_token, "⚠️ Sistem şu an yanıt veremiyor, lütfen tekrar deneyin.")

    def handle(self, event: LineEvent) -> None:
        if event.type != "message" or event.message is None:
            return
        user_id = event.source.user_id if event.source else None
        if not user_id:
            return
        if event.message.type == "image":
            self.on_image(user_id, event.message.id, event.reply_token)
        elif event.message.type == "text":
            self.on_text(user_id, (event.message.text or "").strip(), event.reply_token)

    def on_image(self, user_id: str, message_id: str, reply_token: str | None) -> None:
        job = self.jobs.enqueue(user_id, message_id)
        est = self.estimator.estimate(user_id, job.job_id, job.created_at)
        if reply_token:
            self.line.reply_text(reply_token, build_ack_text(message_id, est))
        self.trigger.fire(user_id)

    def on_text(self, user_id: str, text: str, reply_token: str | None) -> None:
        reply = self.command_reply(user_id, text)
        if reply_token:
            self.line.reply_text(reply_token, reply)

    def command_reply(self, user_id: str, text: str) -> str:
        command = text.upper()
        if command == "STATUS":
            rows = enrich_with_freshness(self.results.get_analyses(user_id), now_ms())
            return build_status_text(rows, self.jobs.stats(user_id))
        if command == "SUMMARY":
            rows = enrich_with_freshness(self.results.get_analyses(user_id), now_ms())
            return build_summary_menu_text(rows) if rows else NO_ANALYSES_TEXT
        if command.startswith("SUMMARY_TF:"):
            return self.summary_tf(user_id, normalize_tf(text.split(":", 1)[1]))
        if command == "TRADE_STYLE" or command.startswith("TRADE_STYLE:"):
            mode = command.split(":", 1)[1].strip() if ":" in command else ""
            return self.trade_style(user_id, mode)
        if command.startswith("DEL_EXEC:"):
            tf = normalize_tf(text.split(":", 1)[1])
            if _is_reserved(tf):
                return f"Bu TF değiştirilemez: {tf}"
            if not tf or not self.results.delete(user_id, tf):
                return f"TF bulunamadı: {tf or '-'}"
            return f"🗑️ TF {tf} kaydı silindi."
        if command.startswith("CHANGE_TF:"):
            parts = text.split(":")
            if len(parts) < 4:
                return "Kullanım: CHANGE_TF:<ESKİ>:TO:<YENİ>"
            old_tf, new_tf = normalize_tf(parts[1]), normalize_tf(parts[3])
            if _is_reserved(old_tf) or _is_reserved(new_tf):
                return f"Bu TF değiştirilemez: {old_tf} -> {new_tf}"
            if not self.results.update_tf(user_id, old_tf, new_tf):
                return f"TF değiştirilemedi: {old_tf} -> {new_tf}"
            return f"✅ TF {old_tf} -> {new_tf} olarak güncellendi."
        return HELP_TEXT

    def summary_tf(self, user_id: str, tf: str | None) -> str:
        if not tf or _is_reserved(tf):
            return "⚠️ Geçersiz TF"
        row = self.results.get(user_id, tf)
        if row is None:
            return f"TF {tf} için kayıt yok."
        [enriched] = enrich_with_freshness([row], now_ms())
        return build_tf_summary_text(enriched)

    def trade_style(self, user_id: str, mode: str) -> str:
        if mode not in TRADE_STYLE_MODES:
            return TRADE_STYLE_MENU_TEXT
        now = now_ms()
        usable = analysis_rows(self.results.get_analyses(user_id))
        if not usable:
            return NO_ANALYSES_TEXT
        valid = [r for r in usable if is_fresh(r, now)]
        selected = select_rows_for_trade_style(valid, mode)
        missing = missing_critical_tfs(selected, mode)
        if missing:
            return build_missing_tfs_text(mode, missing)
        if self.planner is None:
            return "⚠️ İşlem planı şu an kullanılamıyor."
        context = build_trade_style_context(enrich_with_freshness(selected, now), mode)
        try:
            return self.planner.plan(mode, context)
        except (OpenAIError, MalformedPayload, ValueError) as e:
            logger.warning("Trade style %s plan failed for user=%s: %s", mode, user_id, e)
            return f"❌ {mode} planı oluşturulamadı, lütfen tekrar deneyin."


def _is_reserved(tf: str | None) -> bool:
    return bool(tf) and tf.startswith(MARKER_PREFIX)


def get_event_handler(
    jobs: JobStore = Depends(get_job_store),
    results: ResultStore = Depends(get_result_store),
    estimator: ProgressEstimator = Depends(get_estimator),
    line: LineClient = Depends(get_line_client),
    trigger=Depends(get_trigger),
    planner: TradeStylePlanner = Depends(get_trade_planner),
) -> LineEventHandler:
    return LineEventHandler(jobs, results, estimator, line, trigger, planner)


@router.post("/line")
async def line_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_line_signature: str | None = Header(None, alias="X-Line-Signature"),
    handler: LineEventHandler = Depends(get_event_handler),
):
    if not settings.line_channel_secret:
        raise HTTPException(status_code=500, detail="LINE_CHANNEL_SECRET tanımlı değil.")
    raw = await request.body()
    if not verify_line_signature(raw, x_line_signature, settings.line_channel_secret):
        logger.warning("LINE webhook rejected: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        body = LineWebhookBody.model_validate_json(raw)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Bad Request")
    if body.events:
        background_tasks.add_task(handler.handle_all, body.events)
    return {"status": "ok"}
