from .analysis_job import AnalysisJob
from .analysis_log import AnalysisLog
from .artifact import ArtifactCacheEntry
from .error_log import ErrorLog

__all__ = [
    "AnalysisJob",
    "AnalysisLog",
    "ArtifactCacheEntry",
    "ErrorLog",
]
