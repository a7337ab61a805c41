"""Analiz sonucunun normalize şekli ve invoker sınırındaki etiketli sonuç tipleri."""
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from app.services.timeframes import UNKNOWN_TF, normalize_tf


def _as_list(v: Any) -> list:
    if v is None or v == "":
        return []
    if isinstance(v, list):
        return v
    if isinstance(v, (tuple, set)):
        return list(v)
    return [v]


def _as_dict(v: Any) -> dict:
    return dict(v) if isinstance(v, dict) else {}


class ChartAnalysis(BaseModel):
    """Result Store'a yazılan analiz; ham model JSON'u sadece from_model_payload ile içeri girer."""

    detected_tf: str = UNKNOWN_TF
    tfs_used_for_confluence: list[str] = Field(default_factory=list)
    request_update_for_tf: list[str] = Field(default_factory=list)
    trend_bias: str = "Unknown"
    trade_setup: dict = Field(default_factory=dict)
    reasoning_trace: list[str] = Field(default_factory=list)
    structure: dict = Field(default_factory=dict)
    value: dict = Field(default_factory=dict)
    trigger: dict = Field(default_factory=dict)
    indicators: dict = Field(default_factory=dict)
    patterns: list = Field(default_factory=list)
    key_levels: dict = Field(default_factory=dict)
    raw_extraction: dict = Field(default_factory=dict)
    notes: str | None = None
    user_response_text: str | None = None
    # Degraded (fallback) mı, yoksa tam hesaplanmış mı
    fallback: bool = False
    recovered: bool = False

    @classmethod
    def from_model_payload(cls, raw: dict) -> "ChartAnalysis":
        """Modelin döndürdüğü JSON'dan; eski alan adları (priority_1_structure vb.) da okunur."""
        detailed = _as_dict(raw.get("detailed_technical_data"))
        structure = _as_dict(detailed.get("structure") or detailed.get("priority_1_structure"))
        tf = normalize_tf(raw.get("detected_tf")) or UNKNOWN_TF
        notes = detailed.get("notes")
        return cls(
            detected_tf=tf,
            tfs_used_for_confluence=[normalize_tf(t) or str(t) for t in _as_list(raw.get("tfs_used_for_confluence"))],
            request_update_for_tf=[normalize_tf(t) or str(t) for t in _as_list(raw.get("request_update_for_tf"))],
            trend_bias=str(detailed.get("trend_bias") or structure.get("trend_bias") or "Unknown"),
            trade_setup=_as_dict(detailed.get("trade_setup") or detailed.get("setup")),
            reasoning_trace=[str(x) for x in _as_list(raw.get("reasoning_trace") or detailed.get("reasoning_trace"))],
            structure=structure,
            value=_as_dict(detailed.get("value") or detailed.get("priority_2_value")),
            trigger=_as_dict(detailed.get("trigger") or detailed.get("priority_3_trigger")),
            indicators=_as_dict(detailed.get("indicators")),
            patterns=_as_list(detailed.get("patterns")),
            key_levels=_as_dict(detailed.get("key_levels")),
            raw_extraction=_as_dict(detailed.get("raw_extraction")),
            notes=str(notes) if notes else None,
            user_response_text=raw.get("user_response_text") or None,
        )

    def with_hold_for_update(self) -> "ChartAnalysis":
        """Daha taze TF verisi istendiyse: aksiyon WAIT, güven Low, trace'e açıklama."""
        if not self.request_update_for_tf:
            return self
        need = ", ".join(self.request_update_for_tf)
        setup = {**self.trade_setup, "action": "WAIT", "confidence": "Low"}
        trace = [*self.reasoning_trace, f"Decision: WAIT (need more TF data: {need})"]
        return self.model_copy(update={"trade_setup": setup, "reasoning_trace": trace})

    @classmethod
    def fallback_from(cls, prior: dict | None, prior_tf: str | None, reason: str) -> "ChartAnalysis":
        """Analiz zamanında bitmediğinde üretilen degraded sonuç; varsa son kayıt bağlam olarak taşınır."""
        setup = {"action": "WAIT", "confidence": "Low", "risk_flags": ["analysis_unavailable"]}
        if prior:
            return cls(
                detected_tf=UNKNOWN_TF,
                trend_bias=str(prior.get("trend_bias") or "Unknown"),
                trade_setup=setup,
                key_levels=_as_dict(prior.get("key_levels")),
                reasoning_trace=[
                    f"Fallback: {reason}",
                    f"Context: carried forward last stored result (TF {prior_tf or UNKNOWN_TF})",
                    "Decision: WAIT (fresh analysis could not be completed)",
                ],
                fallback=True,
            )
        return cls(
            detected_tf=UNKNOWN_TF,
            trade_setup=setup,
            reasoning_trace=[
                f"Fallback: {reason}",
                "Decision: HOLD (insufficient data)",
            ],
            fallback=True,
        )

    def to_storage(self) -> dict:
        return self.model_dump()


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    MALFORMED_RESPONSE = "malformed_response"
    OTHER = "other"


RETRYABLE_KINDS = frozenset({FailureKind.RATE_LIMITED, FailureKind.SERVER_ERROR})


class AnalysisSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)
    tag: Literal["success"] = "success"
    analysis: ChartAnalysis


class AnalysisDegraded(BaseModel):
    """Yine de başarı sayılır; reason: needs_update:<TF> veya timeout_fallback."""

    model_config = ConfigDict(frozen=True)
    tag: Literal["degraded"] = "degraded"
    analysis: ChartAnalysis
    reason: str


class AnalysisFailure(BaseModel):
    model_config = ConfigDict(frozen=True)
    tag: Literal["failure"] = "failure"
    kind: FailureKind
    message: str = ""

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


AnalysisResult = Union[AnalysisSuccess, AnalysisDegraded, AnalysisFailure]
