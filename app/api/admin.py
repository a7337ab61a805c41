"""Admin JSON uçları: sadece X-Admin-Secret ile erişilir. İş listesi ve kurtarma önbelleği."""
import logging

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_artifact_cache, get_job_store, require_admin
from app.models.analysis_job import JOB_DONE, JOB_ERROR, JOB_PROCESSING, JOB_QUEUED
from app.schemas.queue import JobView
from app.services.artifact_cache import ArtifactCache
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])

JOB_STATUSES = (JOB_QUEUED, JOB_PROCESSING, JOB_DONE, JOB_ERROR)


@router.get("/jobs", response_model=list[JobView])
def list_jobs(
    status: str | None = Query(None, description="queued | processing | done | error"),
    user_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    jobs: JobStore = Depends(get_job_store),
):
    if status and status not in JOB_STATUSES:
        status = None
    return [JobView.from_job(j) for j in jobs.list_jobs(status=status, user_id=user_id, limit=limit)]


@router.get("/cache/{user_id}")
def cache_for_user(user_id: str, cache: ArtifactCache = Depends(get_artifact_cache)):
    return {"user_id": user_id, "keys": cache.list_for_user(user_id), **cache.stats_for_user(user_id)}


@router.post("/cache/purge")
def purge_cache(cache: ArtifactCache = Depends(get_artifact_cache)):
    removed = cache.purge_expired()
    logger.info("Artifact cache purge removed %s expired entries", removed)
    return {"removed": removed}
