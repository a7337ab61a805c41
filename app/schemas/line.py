"""LINE webhook gövdesi; sadece kullanılan alanlar, geri kalanı yok sayılır."""
from pydantic import BaseModel, ConfigDict, Field


class LineSource(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: str = "user"
    user_id: str | None = Field(default=None, alias="userId")


class LineMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    type: str
    text: str | None = None


class LineEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    type: str
    reply_token: str | None = Field(default=None, alias="replyToken")
    source: LineSource | None = None
    message: LineMessage | None = None


class LineWebhookBody(BaseModel):
    model_config = ConfigDict(extra="ignore")
    destination: str | None = None
    events: list[LineEvent] = Field(default_factory=list)
