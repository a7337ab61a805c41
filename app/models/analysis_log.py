"""Kullanıcı + TF başına son analiz sonucu; '_' ile başlayan TF'ler durum işaretçisidir (ör. _JOB)."""
import json

from sqlalchemy import BigInteger, Text
from sqlmodel import Field, SQLModel

MARKER_PREFIX = "_"


class AnalysisLog(SQLModel, table=True):
    __tablename__ = "user_analysis_logs"
    user_id: str = Field(primary_key=True)
    tf: str = Field(primary_key=True)
    timestamp: int = Field(sa_type=BigInteger)  # epoch ms
    timestamp_readable: str = ""
    analysis_json: str = Field(default="{}", sa_type=Text)

    @property
    def is_marker(self) -> bool:
        return (self.tf or "").startswith(MARKER_PREFIX)

    def data(self) -> dict:
        try:
            parsed = json.loads(self.analysis_json or "{}")
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
