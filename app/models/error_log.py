"""Hata log merkezi: global exception handler tarafından doldurulur."""
from sqlalchemy import BigInteger, Text
from sqlmodel import Field, SQLModel


class ErrorLog(SQLModel, table=True):
    __tablename__ = "error_logs"
    id: int | None = Field(default=None, primary_key=True)
    user_id: str | None = Field(default=None, index=True)
    job_id: str | None = Field(default=None, index=True)  # İş kaynaklı hatalarda
    endpoint: str | None = None
    method: str | None = None
    error_message: str | None = None
    stack_trace: str | None = Field(default=None, sa_type=Text)
    created_at: int = Field(sa_type=BigInteger)
