from .analysis import (
    AnalysisDegraded,
    AnalysisFailure,
    AnalysisResult,
    AnalysisSuccess,
    ChartAnalysis,
    FailureKind,
)
from .line import LineEvent, LineWebhookBody
from .queue import InternalAnalyzeRequest, JobView, QueueStatusResponse, StoredAnalysis

__all__ = [
    "AnalysisDegraded",
    "AnalysisFailure",
    "AnalysisResult",
    "AnalysisSuccess",
    "ChartAnalysis",
    "FailureKind",
    "LineEvent",
    "LineWebhookBody",
    "InternalAnalyzeRequest",
    "JobView",
    "QueueStatusResponse",
    "StoredAnalysis",
]
