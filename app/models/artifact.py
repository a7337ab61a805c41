"""Kurtarma önbelleği: iş başına görsel (img) ve ara analiz durumu (state), TTL ile."""
from sqlalchemy import BigInteger, LargeBinary, Text
from sqlmodel import Field, SQLModel

KIND_IMAGE = "img"
KIND_STATE = "state"


class ArtifactCacheEntry(SQLModel, table=True):
    __tablename__ = "artifact_cache"
    key: str = Field(primary_key=True)  # img:{user}:{job} | state:{user}:{job}
    kind: str = Field(index=True)
    user_id: str = Field(index=True)
    job_id: str
    payload: bytes | None = Field(default=None, sa_type=LargeBinary)  # görsel baytları
    state_json: str | None = Field(default=None, sa_type=Text)
    state_status: str | None = None  # pending | partial | complete
    content_type: str | None = None
    attempt: int = 0
    saved_at: int = Field(sa_type=BigInteger)
    expires_at: int = Field(sa_type=BigInteger, index=True)
