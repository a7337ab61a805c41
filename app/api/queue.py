"""Sorgu uçları: kullanıcının kuyruk durumu ve kayıtlı analizleri."""
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_estimator, get_job_store, get_result_store
from app.core.clock import now_ms
from app.core.rate_limit import RATE_LIMIT_STR, limiter
from app.schemas.queue import JobView, QueueStatusResponse, StoredAnalysis
from app.services.estimator import ProgressEstimator
from app.services.job_store import JobStore
from app.services.result_store import ResultStore
from app.services.timeframes import enrich_with_freshness

router = APIRouter(tags=["queue"])


@router.get("/queue/{user_id}", response_model=QueueStatusResponse)
@limiter.limit(RATE_LIMIT_STR)
def queue_status(
    request: Request,
    user_id: str,
    jobs: JobStore = Depends(get_job_store),
    results: ResultStore = Depends(get_result_store),
    estimator: ProgressEstimator = Depends(get_estimator),
):
    stats = jobs.stats(user_id)
    processing = jobs.current_processing(user_id)
    newest = jobs.latest_pending(user_id)
    estimate = estimator.estimate(user_id, newest.job_id, newest.created_at) if newest else None
    return QueueStatusResponse(
        user_id=user_id,
        queued_count=stats.queued_count,
        processing_count=stats.processing_count,
        pending_total=jobs.pending_total(user_id),
        processing=JobView.from_job(processing) if processing else None,
        estimate=estimate.model_dump() if estimate else None,
        marker=results.get_marker(user_id),
    )


@router.get("/analyses/{user_id}", response_model=list[StoredAnalysis])
@limiter.limit(RATE_LIMIT_STR)
def stored_analyses(
    request: Request,
    user_id: str,
    results: ResultStore = Depends(get_result_store),
):
    """Marker satırları (_JOB) hariç, en yeniden eskiye."""
    return [StoredAnalysis(**row) for row in enrich_with_freshness(results.get_analyses(user_id), now_ms())]
