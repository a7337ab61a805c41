"""Anında ack için kuyruk sırası ve ETA; sadece okuma yapar, hata durumunda varsayılanlara düşer."""
import logging

from pydantic import BaseModel

from app.core.config import MIN_EST_SECONDS_PER_IMAGE
from app.core.errors import StoreUnavailable
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)

MIN_SECONDS_PER_IMAGE = 15
MAX_SECONDS_PER_IMAGE = 180
DURATION_SAMPLE = 5


class AckEstimate(BaseModel):
    position: int = 1
    total_pending: int = 1
    queued_count: int = 0
    processing_count: int = 0
    seconds_per_image: float
    eta_start_seconds: float = 0
    eta_done_seconds: float = 0


def format_duration(seconds: float) -> str:
    s = max(0, round(float(seconds or 0)))
    if s < 60:
        return f"{s} sn"
    mins = round(s / 60)
    if mins < 60:
        return f"{mins} dk"
    hours, rem = divmod(mins, 60)
    return f"{hours} sa {rem} dk" if rem else f"{hours} sa"


class ProgressEstimator:
    def __init__(self, store: JobStore, default_seconds_per_image: int = 45):
        self.store = store
        self.default_seconds = float(max(MIN_EST_SECONDS_PER_IMAGE, default_seconds_per_image))

    def seconds_per_image(self, user_id: str) -> float:
        """Son 5 tamamlanan işin ortalaması, [15, 180] sn aralığına sıkıştırılır."""
        try:
            durations = [d for d in self.store.recent_durations(user_id, DURATION_SAMPLE) if d and d > 0]
        except StoreUnavailable as e:
            logger.warning("Duration history unavailable for user=%s: %s", user_id, e)
            return self.default_seconds
        if not durations:
            return self.default_seconds
        avg_s = sum(durations) / len(durations) / 1000
        return min(MAX_SECONDS_PER_IMAGE, max(MIN_SECONDS_PER_IMAGE, avg_s))

    def estimate(self, user_id: str, job_id: str | None, created_at: int | None) -> AckEstimate:
        per = self.seconds_per_image(user_id)
        try:
            stats = self.store.stats(user_id)
            total = self.store.pending_total(user_id)
            if created_at is None and job_id:
                job = self.store.get(job_id)
                created_at = job.created_at if job else None
            position = self.store.pending_position(user_id, created_at) if created_at is not None else 0
        except StoreUnavailable as e:
            logger.warning("Queue estimate fell back to defaults for user=%s: %s", user_id, e)
            return AckEstimate(seconds_per_image=per, eta_done_seconds=per)
        position = max(1, position)
        return AckEstimate(
            position=position,
            total_pending=max(total, position),
            queued_count=stats.queued_count,
            processing_count=stats.processing_count,
            seconds_per_image=per,
            eta_start_seconds=(position - 1) * per,
            eta_done_seconds=position * per,
        )
