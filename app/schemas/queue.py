from pydantic import AliasChoices, BaseModel, Field, field_validator


class InternalAnalyzeRequest(BaseModel):
    """Self-trigger gövdesi; eski istemciler için userId de kabul edilir."""

    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))

    @field_validator("user_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("user_id boş olamaz")
        return v


class JobView(BaseModel):
    job_id: str
    user_id: str
    source_ref: str
    status: str
    attempt: int
    created_at: int
    started_at: int | None = None
    finished_at: int | None = None
    duration_ms: int | None = None
    result_tf: str | None = None
    last_error: str | None = None

    @classmethod
    def from_job(cls, job) -> "JobView":
        return cls(
            job_id=job.job_id,
            user_id=job.user_id,
            source_ref=job.source_ref,
            status=job.status,
            attempt=job.attempt,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            duration_ms=job.duration_ms,
            result_tf=job.result_tf,
            last_error=job.last_error,
        )


class QueueStatusResponse(BaseModel):
    user_id: str
    queued_count: int
    processing_count: int
    pending_total: int
    processing: JobView | None = None
    estimate: dict | None = None
    marker: dict | None = None


class StoredAnalysis(BaseModel):
    tf: str | None
    timestamp: int
    timestamp_readable: str | None = None
    age_minutes: int | None = None
    is_fresh: bool
    data: dict
