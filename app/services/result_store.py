"""Analiz sonuçları (user_analysis_logs): kullanıcı + TF başına tek satır, upsert."""
import json
import logging
from collections.abc import Callable

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from app.core.clock import now_ms, readable
from app.core.database import store_op
from app.models.analysis_log import MARKER_PREFIX, AnalysisLog
from app.services.timeframes import normalize_tf

logger = logging.getLogger(__name__)

JOB_MARKER_TF = "_JOB"


class ResultStore:
    def __init__(self, engine: Engine, display_timezone: str = "Asia/Bangkok", clock: Callable[[], int] = now_ms):
        self.engine = engine
        self.display_timezone = display_timezone
        self.clock = clock

    def readable(self, ms: int) -> str:
        return readable(ms, self.display_timezone)

    @store_op
    def get_all(self, user_id: str) -> list[AnalysisLog]:
        with Session(self.engine) as db:
            return list(db.exec(select(AnalysisLog).where(AnalysisLog.user_id == user_id)).all())

    def get_analyses(self, user_id: str) -> list[AnalysisLog]:
        """İşaretçi satırlar (_JOB vb.) hariç; en yeniden eskiye."""
        rows = [r for r in self.get_all(user_id) if not r.is_marker]
        return sorted(rows, key=lambda r: r.timestamp or 0, reverse=True)

    @store_op
    def get(self, user_id: str, tf: str) -> AnalysisLog | None:
        with Session(self.engine) as db:
            return db.get(AnalysisLog, (user_id, tf))

    @store_op
    def save(self, user_id: str, tf: str, timestamp: int, timestamp_readable: str, result: dict) -> None:
        with Session(self.engine) as db:
            db.merge(
                AnalysisLog(
                    user_id=user_id,
                    tf=tf,
                    timestamp=timestamp,
                    timestamp_readable=timestamp_readable,
                    analysis_json=json.dumps(result, ensure_ascii=False, default=str),
                )
            )
            db.commit()

    @store_op
    def delete(self, user_id: str, tf: str) -> bool:
        with self.engine.begin() as conn:
            res = conn.execute(delete(AnalysisLog).where(AnalysisLog.user_id == user_id, AnalysisLog.tf == tf))
            return res.rowcount > 0

    @store_op
    def update_tf(self, user_id: str, old_tf: str, new_tf: str) -> bool:
        """Yanlış tespit edilen TF'yi düzeltir: satır yeni etikete taşınır."""
        old_tf, new_tf = normalize_tf(old_tf), normalize_tf(new_tf)
        if not old_tf or not new_tf or old_tf == new_tf:
            return False
        if old_tf.startswith(MARKER_PREFIX) or new_tf.startswith(MARKER_PREFIX):
            return False
        row = self.get(user_id, old_tf)
        if row is None:
            return False
        data = row.data()
        data["detected_tf"] = new_tf
        self.save(user_id, new_tf, row.timestamp, row.timestamp_readable, data)
        self.delete(user_id, old_tf)
        return True

    def save_marker(self, user_id: str, payload: dict) -> None:
        """Kuyruk durumunu dışarıdan izlemek için _JOB satırı; zaman alanları eklenir."""
        at = self.clock()
        at_readable = self.readable(at)
        self.save(user_id, JOB_MARKER_TF, at, at_readable, {**payload, "at": at, "at_readable": at_readable})

    def get_marker(self, user_id: str) -> dict | None:
        row = self.get(user_id, JOB_MARKER_TF)
        return row.data() if row else None
