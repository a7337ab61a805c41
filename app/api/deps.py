"""
FastAPI bağımlılıkları: store'lar, işleyici ve dış istemciler.

Testler app.dependency_overrides ile get_engine, get_invoker, get_content_fetcher,
get_trigger, get_line_client ve get_trade_planner'ı değiştirir.
"""
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.engine import Engine

from app.core.config import ProcessorConfig, settings
from app.core.database import engine
from app.core.security import secrets_match
from app.services.analyze import OpenAIChartBackend
from app.services.artifact_cache import ArtifactCache
from app.services.estimator import ProgressEstimator
from app.services.invoker import AnalysisInvoker
from app.services.job_store import JobStore
from app.services.line_client import LineClient
from app.services.processor import JobProcessor
from app.services.result_store import ResultStore
from app.services.trade_style import TradeStylePlanner
from app.services.trigger import SelfTrigger


def get_engine() -> Engine:
    return engine


@lru_cache
def get_processor_config() -> ProcessorConfig:
    return ProcessorConfig.from_settings(settings)


def get_job_store(
    bind: Engine = Depends(get_engine),
    config: ProcessorConfig = Depends(get_processor_config),
) -> JobStore:
    return JobStore(bind, prune_keep_count=config.prune_keep_count)


def get_result_store(
    bind: Engine = Depends(get_engine),
    config: ProcessorConfig = Depends(get_processor_config),
) -> ResultStore:
    return ResultStore(bind, display_timezone=config.display_timezone)


def get_artifact_cache(
    bind: Engine = Depends(get_engine),
    config: ProcessorConfig = Depends(get_processor_config),
) -> ArtifactCache:
    return ArtifactCache(bind, ttl_seconds=config.cache_ttl_seconds)


@lru_cache
def _shared_backend() -> OpenAIChartBackend:
    return OpenAIChartBackend(model=settings.openai_model, max_output_tokens=settings.ai_max_output_tokens)


@lru_cache
def _shared_invoker() -> AnalysisInvoker:
    return AnalysisInvoker(_shared_backend())


def get_invoker() -> AnalysisInvoker:
    return _shared_invoker()


def get_trade_planner() -> TradeStylePlanner:
    return TradeStylePlanner(_shared_backend(), timeout_s=settings.analysis_timeout_ms / 1000)


@lru_cache
def _shared_line_client() -> LineClient:
    return LineClient(settings.line_channel_access_token)


def get_line_client() -> LineClient:
    return _shared_line_client()


def get_content_fetcher(line: LineClient = Depends(get_line_client)) -> LineClient:
    return line


def get_trigger(request: Request) -> SelfTrigger:
    """INTERNAL_BASE_URL yoksa gelen isteğin kökü kullanılır."""
    base = settings.internal_base_url or str(request.base_url).rstrip("/")
    return SelfTrigger(base, token=settings.internal_task_token)


def get_estimator(
    jobs: JobStore = Depends(get_job_store),
    config: ProcessorConfig = Depends(get_processor_config),
) -> ProgressEstimator:
    return ProgressEstimator(jobs, default_seconds_per_image=config.est_seconds_per_image)


def get_processor(
    jobs: JobStore = Depends(get_job_store),
    results: ResultStore = Depends(get_result_store),
    cache: ArtifactCache = Depends(get_artifact_cache),
    invoker=Depends(get_invoker),
    fetcher=Depends(get_content_fetcher),
    trigger=Depends(get_trigger),
    config: ProcessorConfig = Depends(get_processor_config),
) -> JobProcessor:
    return JobProcessor(jobs, results, cache, invoker, fetcher, trigger, config)


def require_internal_token(x_internal_task_token: str | None = Header(None, alias="X-Internal-Task-Token")) -> None:
    """Token tanımlıysa zorunlu; tanımlı değilse kontrol yapılmaz."""
    expected = settings.internal_task_token
    if not expected:
        return
    if not secrets_match(x_internal_task_token, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    expected = settings.admin_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Admin yapılandırılmamış (ADMIN_SECRET yok).")
    if not secrets_match(x_admin_secret, expected):
        raise HTTPException(status_code=403, detail="Yetkisiz.")
