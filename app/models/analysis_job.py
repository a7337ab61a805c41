"""Görsel analiz kuyruğu (kullanıcı başına FIFO): queued → processing → done | error."""
from sqlalchemy import BigInteger, Index
from sqlmodel import Field, SQLModel

JOB_QUEUED = "queued"
JOB_PROCESSING = "processing"
JOB_DONE = "done"
JOB_ERROR = "error"

LAST_ERROR_MAX = 800


class AnalysisJob(SQLModel, table=True):
    __tablename__ = "analysis_jobs"
    __table_args__ = (
        Index("ix_analysis_jobs_user_status_created", "user_id", "status", "created_at"),
    )
    # Aynı created_at değerinde ekleme sırası id ile korunur
    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(unique=True, index=True)  # (user_id, source_ref) türevi, idempotency anahtarı
    user_id: str = Field(index=True)
    source_ref: str  # LINE message id; görsel bununla tekrar indirilir
    status: str = JOB_QUEUED  # queued | processing | done | error
    attempt: int = 0
    created_at: int = Field(sa_type=BigInteger)  # epoch ms
    started_at: int | None = Field(default=None, sa_type=BigInteger)
    finished_at: int | None = Field(default=None, sa_type=BigInteger)
    result_tf: str | None = None
    last_error: str | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at
