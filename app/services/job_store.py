"""
Kullanıcı başına FIFO iş kuyruğu (analysis_jobs).

Tek kilit mekanizması koşullu UPDATE'tir: durum geçişleri WHERE içinde status
kontrolü ile yapılır, etkilenen satır 0 ise yarış kaybedilmiştir.
"""
import hashlib
import logging
from collections.abc import Callable

from pydantic import BaseModel
from sqlalchemy import delete, exists, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from app.core.clock import now_ms
from app.core.database import store_op
from app.models.analysis_job import (
    JOB_DONE,
    JOB_ERROR,
    JOB_PROCESSING,
    JOB_QUEUED,
    LAST_ERROR_MAX,
    AnalysisJob,
)

logger = logging.getLogger(__name__)

PENDING_STATUSES = (JOB_QUEUED, JOB_PROCESSING)


class EnqueuedJob(BaseModel):
    job_id: str
    created_at: int


class QueueStats(BaseModel):
    queued_count: int = 0
    processing_count: int = 0


def make_job_id(user_id: str, source_ref: str) -> str:
    """Aynı kullanıcı + aynı mesaj her zaman aynı job_id'yi üretir."""
    raw = f"{user_id}:{source_ref}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:32]


def _truncate(msg: str | None) -> str | None:
    if msg is None:
        return None
    return str(msg)[:LAST_ERROR_MAX]


class JobStore:
    def __init__(self, engine: Engine, clock: Callable[[], int] = now_ms, prune_keep_count: int = 5):
        self.engine = engine
        self.clock = clock
        self.prune_keep_count = max(1, prune_keep_count)

    @store_op
    def enqueue(self, user_id: str, source_ref: str) -> EnqueuedJob:
        """Idempotent ekleme: aynı (user, source_ref) ikinci kez gelirse mevcut kayıt döner."""
        job_id = make_job_id(user_id, source_ref)
        existing = self.get(job_id)
        if existing:
            return EnqueuedJob(job_id=existing.job_id, created_at=existing.created_at)
        job = AnalysisJob(
            job_id=job_id,
            user_id=user_id,
            source_ref=str(source_ref),
            status=JOB_QUEUED,
            attempt=0,
            created_at=self.clock(),
        )
        try:
            with Session(self.engine) as db:
                db.add(job)
                db.commit()
                db.refresh(job)
                return EnqueuedJob(job_id=job.job_id, created_at=job.created_at)
        except IntegrityError:
            # Eşzamanlı aynı ekleme: unique job_id kazananı belirler
            existing = self.get(job_id)
            if existing is None:
                raise
            return EnqueuedJob(job_id=existing.job_id, created_at=existing.created_at)

    @store_op
    def get(self, job_id: str) -> AnalysisJob | None:
        with Session(self.engine) as db:
            return db.exec(select(AnalysisJob).where(AnalysisJob.job_id == job_id)).first()

    @store_op
    def claim_next(self, user_id: str) -> AnalysisJob | None:
        """
        En eski queued işi processing'e çeker. Kullanıcının processing işi varsa None.
        Koşullar tek UPDATE içinde; iki eşzamanlı çağrıdan yalnızca biri satır günceller.
        """
        with Session(self.engine) as db:
            candidate = db.exec(
                select(AnalysisJob)
                .where(AnalysisJob.user_id == user_id, AnalysisJob.status == JOB_QUEUED)
                .order_by(AnalysisJob.created_at, AnalysisJob.id)
                .limit(1)
            ).first()
        if candidate is None:
            return None
        if not self._try_claim(candidate.id, user_id):
            return None
        return self.get(candidate.job_id)

    def _try_claim(self, row_id: int, user_id: str) -> bool:
        other = aliased(AnalysisJob)
        busy = exists().where(other.user_id == user_id, other.status == JOB_PROCESSING)
        stmt = (
            update(AnalysisJob)
            .where(AnalysisJob.id == row_id, AnalysisJob.status == JOB_QUEUED, ~busy)
            .values(status=JOB_PROCESSING, started_at=self.clock(), last_error=None)
        )
        with self.engine.begin() as conn:
            return conn.execute(stmt).rowcount == 1

    def _transition(self, job_id: str, **values) -> bool:
        """Sadece processing durumundaki satıra uygulanır; 0 satır = yarış kaybı."""
        stmt = (
            update(AnalysisJob)
            .where(AnalysisJob.job_id == job_id, AnalysisJob.status == JOB_PROCESSING)
            .values(**values)
        )
        with self.engine.begin() as conn:
            changed = conn.execute(stmt).rowcount == 1
        if not changed:
            logger.warning("Job %s not in processing; transition to %s skipped", job_id, values.get("status"))
        return changed

    @store_op
    def requeue(self, job_id: str, attempt: int, last_error: str | None) -> bool:
        return self._transition(
            job_id,
            status=JOB_QUEUED,
            attempt=attempt,
            started_at=None,
            last_error=_truncate(last_error),
        )

    @store_op
    def mark_done(self, job_id: str, result_tf: str | None) -> bool:
        changed = self._transition(job_id, status=JOB_DONE, finished_at=self.clock(), result_tf=result_tf)
        if changed:
            job = self.get(job_id)
            if job:
                try:
                    self.prune_done(job.user_id, self.prune_keep_count)
                except SQLAlchemyError as e:
                    logger.warning("Prune done jobs failed for user=%s: %s", job.user_id, str(e)[:500])
        return changed

    @store_op
    def mark_error(self, job_id: str, message: str) -> bool:
        return self._transition(job_id, status=JOB_ERROR, finished_at=self.clock(), last_error=_truncate(message or ""))

    def prune_done(self, user_id: str, keep: int) -> int:
        """En son biten `keep` adet done işi tutar, gerisini siler."""
        keep = max(1, int(keep))
        with Session(self.engine) as db:
            stale_ids = list(
                db.exec(
                    select(AnalysisJob.id)
                    .where(AnalysisJob.user_id == user_id, AnalysisJob.status == JOB_DONE)
                    .order_by(AnalysisJob.finished_at.desc(), AnalysisJob.id.desc())
                    .offset(keep)
                ).all()
            )
        if not stale_ids:
            return 0
        with self.engine.begin() as conn:
            return conn.execute(delete(AnalysisJob).where(AnalysisJob.id.in_(stale_ids))).rowcount

    def _count(self, user_id: str, *statuses: str, created_before: int | None = None) -> int:
        stmt = select(func.count()).select_from(AnalysisJob).where(
            AnalysisJob.user_id == user_id, AnalysisJob.status.in_(statuses)
        )
        if created_before is not None:
            stmt = stmt.where(AnalysisJob.created_at <= created_before)
        with Session(self.engine) as db:
            return int(db.exec(stmt).one() or 0)

    @store_op
    def stats(self, user_id: str) -> QueueStats:
        return QueueStats(
            queued_count=self._count(user_id, JOB_QUEUED),
            processing_count=self._count(user_id, JOB_PROCESSING),
        )

    @store_op
    def has_queued(self, user_id: str) -> bool:
        return self._count(user_id, JOB_QUEUED) > 0

    @store_op
    def pending_total(self, user_id: str) -> int:
        return self._count(user_id, *PENDING_STATUSES)

    @store_op
    def pending_position(self, user_id: str, created_at: int) -> int:
        """queued + processing işler arasında created_at'e göre sıra (1 tabanlı)."""
        return self._count(user_id, *PENDING_STATUSES, created_before=created_at)

    @store_op
    def current_processing(self, user_id: str) -> AnalysisJob | None:
        with Session(self.engine) as db:
            return db.exec(
                select(AnalysisJob)
                .where(AnalysisJob.user_id == user_id, AnalysisJob.status == JOB_PROCESSING)
                .order_by(AnalysisJob.started_at)
                .limit(1)
            ).first()

    @store_op
    def latest_pending(self, user_id: str) -> AnalysisJob | None:
        with Session(self.engine) as db:
            return db.exec(
                select(AnalysisJob)
                .where(AnalysisJob.user_id == user_id, AnalysisJob.status.in_(PENDING_STATUSES))
                .order_by(AnalysisJob.created_at.desc(), AnalysisJob.id.desc())
                .limit(1)
            ).first()

    @store_op
    def recent_durations(self, user_id: str, limit: int = 5) -> list[int]:
        """Son biten işlerin süreleri (ms), en yeniden eskiye; ETA için."""
        with Session(self.engine) as db:
            jobs = db.exec(
                select(AnalysisJob)
                .where(
                    AnalysisJob.user_id == user_id,
                    AnalysisJob.status == JOB_DONE,
                    AnalysisJob.started_at.is_not(None),
                    AnalysisJob.finished_at.is_not(None),
                    AnalysisJob.finished_at >= AnalysisJob.started_at,
                )
                .order_by(AnalysisJob.finished_at.desc())
                .limit(limit)
            ).all()
        return [j.duration_ms for j in jobs if j.duration_ms]

    @store_op
    def list_jobs(self, status: str | None = None, user_id: str | None = None, limit: int = 100) -> list[AnalysisJob]:
        stmt = select(AnalysisJob).order_by(AnalysisJob.id.desc()).limit(limit)
        if status:
            stmt = stmt.where(AnalysisJob.status == status)
        if user_id:
            stmt = stmt.where(AnalysisJob.user_id == user_id)
        with Session(self.engine) as db:
            return list(db.exec(stmt).all())
