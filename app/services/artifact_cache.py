"""
Kurtarma önbelleği (img:{user}:{job}, state:{user}:{job}).

Kayıt sistemi değildir: put hataları loglanıp yutulur, get ıskalama/hata durumunda
None döner. TTL dolmuş kayıtlar ıskalama sayılır.
"""
import json
import logging
from collections.abc import Callable

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.clock import now_ms
from app.models.artifact import KIND_IMAGE, KIND_STATE, ArtifactCacheEntry
from app.services.line_client import SourceImage

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 3600


def image_key(user_id: str, job_id: str) -> str:
    return f"{KIND_IMAGE}:{user_id}:{job_id}"


def state_key(user_id: str, job_id: str) -> str:
    return f"{KIND_STATE}:{user_id}:{job_id}"


class ArtifactCache:
    def __init__(self, engine: Engine, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], int] = now_ms):
        self.engine = engine
        self.ttl_ms = max(1, int(ttl_seconds)) * 1000
        self.clock = clock

    def _upsert(self, entry: ArtifactCacheEntry) -> None:
        with Session(self.engine) as db:
            db.merge(entry)
            db.commit()

    def _load(self, key: str) -> ArtifactCacheEntry | None:
        with Session(self.engine) as db:
            entry = db.get(ArtifactCacheEntry, key)
            if entry is None:
                return None
            if entry.expires_at <= self.clock():
                db.delete(entry)
                db.commit()
                return None
            return entry

    def put(self, user_id: str, job_id: str, payload: bytes, content_type: str = "image/jpeg", attempt: int = 0) -> bool:
        """Aynı iş için tekrar yazmak güvenli (üzerine yazar)."""
        now = self.clock()
        try:
            self._upsert(
                ArtifactCacheEntry(
                    key=image_key(user_id, job_id),
                    kind=KIND_IMAGE,
                    user_id=user_id,
                    job_id=job_id,
                    payload=payload,
                    content_type=content_type or "image/jpeg",
                    attempt=attempt,
                    saved_at=now,
                    expires_at=now + self.ttl_ms,
                )
            )
            return True
        except Exception as e:
            logger.warning("Artifact cache put failed (user=%s job=%s): %s", user_id, job_id, str(e)[:500])
            return False

    def get(self, user_id: str, job_id: str) -> SourceImage | None:
        try:
            entry = self._load(image_key(user_id, job_id))
        except SQLAlchemyError as e:
            logger.warning("Artifact cache get failed (user=%s job=%s): %s", user_id, job_id, str(e)[:500])
            return None
        if entry is None or not entry.payload:
            return None
        return SourceImage(data=entry.payload, content_type=entry.content_type or "image/jpeg")

    def delete(self, user_id: str, job_id: str) -> None:
        self._delete_keys(image_key(user_id, job_id))

    def put_state(self, user_id: str, job_id: str, state: dict, status: str = "pending", attempt: int = 0) -> bool:
        """Ara analiz durumu (ör. kısmi sonuç); timeout sonrası teşhis için."""
        now = self.clock()
        try:
            self._upsert(
                ArtifactCacheEntry(
                    key=state_key(user_id, job_id),
                    kind=KIND_STATE,
                    user_id=user_id,
                    job_id=job_id,
                    state_json=json.dumps(state, ensure_ascii=False, default=str),
                    state_status=status,
                    attempt=attempt,
                    saved_at=now,
                    expires_at=now + self.ttl_ms,
                )
            )
            return True
        except Exception as e:
            logger.warning("Artifact state put failed (user=%s job=%s): %s", user_id, job_id, str(e)[:500])
            return False

    def get_state(self, user_id: str, job_id: str) -> dict | None:
        try:
            entry = self._load(state_key(user_id, job_id))
        except SQLAlchemyError as e:
            logger.warning("Artifact state get failed (user=%s job=%s): %s", user_id, job_id, str(e)[:500])
            return None
        if entry is None:
            return None
        try:
            state = json.loads(entry.state_json or "{}")
        except ValueError:
            return None
        return {"analysis": state, "status": entry.state_status, "attempt": entry.attempt, "saved_at": entry.saved_at}

    def cleanup(self, user_id: str, job_id: str) -> None:
        """İş tamamlandı: görsel ve durum kaydı birlikte silinir."""
        self._delete_keys(image_key(user_id, job_id), state_key(user_id, job_id))

    def _delete_keys(self, *keys: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(ArtifactCacheEntry).where(ArtifactCacheEntry.key.in_(keys)))
        except SQLAlchemyError as e:
            logger.warning("Artifact cache delete failed (%s): %s", ", ".join(keys), str(e)[:500])

    def list_for_user(self, user_id: str) -> list[str]:
        with Session(self.engine) as db:
            return list(
                db.exec(
                    select(ArtifactCacheEntry.key)
                    .where(ArtifactCacheEntry.user_id == user_id, ArtifactCacheEntry.expires_at > self.clock())
                    .order_by(ArtifactCacheEntry.saved_at)
                ).all()
            )

    def stats_for_user(self, user_id: str) -> dict:
        with Session(self.engine) as db:
            rows = db.exec(
                select(ArtifactCacheEntry.kind, func.count())
                .where(ArtifactCacheEntry.user_id == user_id, ArtifactCacheEntry.expires_at > self.clock())
                .group_by(ArtifactCacheEntry.kind)
            ).all()
        counts = {kind: int(n) for kind, n in rows}
        images = counts.get(KIND_IMAGE, 0)
        states = counts.get(KIND_STATE, 0)
        return {"total_keys": images + states, "images": images, "states": states}

    def purge_expired(self) -> int:
        with self.engine.begin() as conn:
            return conn.execute(
                delete(ArtifactCacheEntry).where(ArtifactCacheEntry.expires_at <= self.clock())
            ).rowcount
