"""
POST /internal/analyze: kullanıcının kuyruğundan tek iş alır ve yanıttan sonra işler.

200: yapılacak iş yok (idle/busy), 202: iş alındı ve arka planda işleniyor,
400: gövde hatalı, 401: token eksik/yanlış.
"""
import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.api.deps import get_processor, require_internal_token
from app.schemas.queue import InternalAnalyzeRequest
from app.services.processor import JobProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


async def _parse_body(request: Request) -> InternalAnalyzeRequest:
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Bad Request")
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="Bad Request")
    try:
        return InternalAnalyzeRequest.model_validate(raw)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Bad Request")


@router.post("/analyze", dependencies=[Depends(require_internal_token)])
async def internal_analyze(
    request: Request,
    background_tasks: BackgroundTasks,
    processor: JobProcessor = Depends(get_processor),
):
    body = await _parse_body(request)
    job = processor.claim(body.user_id)
    if job is None:
        stats = processor.jobs.stats(body.user_id)
        return JSONResponse(
            status_code=200,
            content={
                "status": "busy" if stats.processing_count > 0 else "idle",
                "queued": stats.queued_count,
                "processing": stats.processing_count,
            },
        )
    # İş yanıt gönderildikten sonra bu süreçte koşar; çağıran beklemez
    background_tasks.add_task(processor.run, job)
    return JSONResponse(status_code=202, content={"status": "accepted", "job_id": job.job_id})
