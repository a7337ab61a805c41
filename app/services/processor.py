"""
Kuyruk işleyicisi: çağrı başına tek iş.

claim -> görsel (kaynak, yoksa önbellek) -> önbelleğe yaz -> analiz -> sonucu yorumla
-> kaydet / yeniden kuyruğa al / hata -> kuyrukta iş varsa zinciri tetikle.

Job Store hataları (StoreUnavailable) yakalanmaz, çağrı için ölümcüldür. Diğer tüm
iş adımı hataları iş seviyesinde tekrar/terminal karara çevrilir.
"""
import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol

from pydantic import BaseModel

from app.core.clock import now_ms
from app.core.config import ProcessorConfig
from app.core.errors import AnalysisFatal, AnalysisRetryable, AnalysisTimeout, SourceUnavailable, StoreUnavailable
from app.models.analysis_job import AnalysisJob
from app.schemas.analysis import (
    AnalysisDegraded,
    AnalysisFailure,
    AnalysisResult,
    ChartAnalysis,
    FailureKind,
)
from app.services.artifact_cache import ArtifactCache
from app.services.invoker import CancellationToken
from app.services.job_store import JobStore, QueueStats
from app.services.line_client import SourceFetchError, SourceImage
from app.services.result_store import ResultStore
from app.services.timeframes import build_context_text, latest_analysis_row

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX = 500
# Bundan kısa kurtarma denemesi anlamsız; doğrudan fallback
MIN_RECOVERY_DEADLINE_MS = 1000


class ContentFetcher(Protocol):
    def fetch_content(self, source_ref: str) -> SourceImage: ...


class Invoker(Protocol):
    def invoke(
        self, image: SourceImage, context: str, deadline_ms: int, cancel: CancellationToken | None = None
    ) -> AnalysisResult: ...


class Trigger(Protocol):
    def fire(self, user_id: str): ...


class JobOutcome(str, Enum):
    DONE = "done"
    RETRYING = "retrying"
    ERROR = "error"


class ProcessResult(BaseModel):
    job_id: str
    outcome: JobOutcome
    result_tf: str | None = None
    fallback: bool = False
    recovered: bool = False
    error: str | None = None


class InvocationBudget:
    """
    Tek çağrıda analiz için kullanılabilir süre (budget * (1 - headroom)).
    Zaman aşımına uğrayan çağrı verilen deadline'ın tamamını harcamış sayılır.
    """

    def __init__(self, usable_ms: int, clock: Callable[[], int]):
        self.usable_ms = usable_ms
        self.clock = clock
        self.started = clock()
        self.charged = 0

    def remaining(self) -> int:
        spent = max(self.clock() - self.started, self.charged)
        return max(0, self.usable_ms - spent)

    def grant(self, wanted_ms: int) -> int:
        return min(wanted_ms, self.remaining())

    def charge(self, ms: int) -> None:
        self.charged += ms


class JobProcessor:
    def __init__(
        self,
        jobs: JobStore,
        results: ResultStore,
        cache: ArtifactCache,
        invoker: Invoker,
        fetcher: ContentFetcher,
        trigger: Trigger,
        config: ProcessorConfig,
        clock: Callable[[], int] = now_ms,
    ):
        self.jobs = jobs
        self.results = results
        self.cache = cache
        self.invoker = invoker
        self.fetcher = fetcher
        self.trigger = trigger
        self.config = config
        self.clock = clock

    # --- claim ---

    def claim(self, user_id: str) -> AnalysisJob | None:
        """Sıradaki işi alır; yoksa (boş kuyruk veya başka iş işleniyor) idle/busy işaretçisi yazar."""
        job = self.jobs.claim_next(user_id)
        if job is None:
            stats = self.jobs.stats(user_id)
            self._marker(
                user_id,
                status="busy" if stats.processing_count > 0 else "idle",
                queued=stats.queued_count,
                processing=stats.processing_count,
            )
            return None
        stats = self.jobs.stats(user_id)
        self._marker(
            user_id,
            status="processing",
            job_id=job.job_id,
            source_ref=job.source_ref,
            attempt=job.attempt,
            max_attempts=self.config.max_attempts,
            deadline_ms=self.config.analysis_deadline_ms,
            queued_after_claim=stats.queued_count,
            started_at=job.started_at,
        )
        logger.info("Claimed job %s for user=%s (attempt %s)", job.job_id, user_id, job.attempt)
        return job

    def process_next(self, user_id: str) -> ProcessResult | None:
        """claim + run aynı çağrıda; arka plan görevi olmadan sürmek için."""
        job = self.claim(user_id)
        if job is None:
            return None
        return self.run(job)

    # --- run ---

    def run(self, job: AnalysisJob) -> ProcessResult:
        budget = InvocationBudget(self.config.usable_budget_ms, self.clock)
        try:
            image = self._load_source(job)
            rows = self.results.get_analyses(job.user_id)
            context = build_context_text(rows, self.clock())
            try:
                result = self._invoke(budget, image, context, self.config.analysis_deadline_ms)
            except AnalysisTimeout as e:
                logger.warning("Job %s: %s", job.job_id, e)
                result = self._recover_from_timeout(job, image, context, rows, budget)
            if isinstance(result, AnalysisFailure):
                if result.retryable:
                    raise AnalysisRetryable(result.message or result.kind.value)
                raise AnalysisFatal(f"{result.kind.value}: {result.message}")
            return self._complete(job, self._finalize(result))
        except StoreUnavailable:
            raise
        except AnalysisRetryable as e:
            return self._retry_or_fail(job, str(e))
        except (SourceUnavailable, AnalysisFatal) as e:
            return self._fail(job, str(e))
        except Exception as e:
            logger.exception("Unexpected failure while processing job %s", job.job_id)
            return self._fail(job, f"{type(e).__name__}: {e}")

    def _invoke(self, budget: InvocationBudget, image: SourceImage, context: str, wanted_ms: int) -> AnalysisResult:
        """Deadline kalan bütçeyle sınırlanır; zaman aşımı AnalysisTimeout olarak yükselir."""
        deadline = max(1, budget.grant(wanted_ms))
        result = self.invoker.invoke(image, context, deadline, CancellationToken())
        if isinstance(result, AnalysisFailure) and result.kind == FailureKind.TIMEOUT:
            budget.charge(deadline)
            raise AnalysisTimeout(result.message or f"Timeout after {deadline}ms")
        return result

    def _load_source(self, job: AnalysisJob) -> SourceImage:
        try:
            image = self.fetcher.fetch_content(job.source_ref)
        except SourceFetchError as e:
            cached = self.cache.get(job.user_id, job.job_id)
            if cached is None:
                raise SourceUnavailable(
                    f"Source image unavailable (ref={job.source_ref}) and not cached: {str(e)[:ERROR_MESSAGE_MAX]}"
                ) from e
            logger.warning("Source fetch failed for job %s, using cached image: %s", job.job_id, e)
            return cached
        # Invoke'tan önce; başarısızlığı işi durdurmaz
        self.cache.put(job.user_id, job.job_id, image.data, image.content_type, job.attempt)
        return image

    def _recover_from_timeout(
        self, job: AnalysisJob, image: SourceImage, context: str, rows: list, budget: InvocationBudget
    ) -> AnalysisResult:
        """
        Kısaltılmış deadline ile en fazla recovery_cap deneme. Kalan bütçe
        MIN_RECOVERY_DEADLINE_MS altına inerse denemeler kesilir; sonuç degraded olur.
        """
        for n in range(1, self.config.recovery_cap + 1):
            if budget.grant(self.config.recovery_deadline_ms) < MIN_RECOVERY_DEADLINE_MS:
                logger.info("Job %s: invocation budget spent, skipping remaining recovery passes", job.job_id)
                break
            self.cache.put_state(
                job.user_id, job.job_id, {"phase": "timeout_recovery", "pass": n}, status="partial", attempt=job.attempt
            )
            source = self.cache.get(job.user_id, job.job_id) or image
            logger.info("Timeout recovery pass %s/%s for job %s", n, self.config.recovery_cap, job.job_id)
            try:
                result = self._invoke(budget, source, context, self.config.recovery_deadline_ms)
            except AnalysisTimeout:
                continue
            if isinstance(result, AnalysisFailure):
                return result
            analysis = result.analysis.model_copy(update={"recovered": True})
            return result.model_copy(update={"analysis": analysis})
        # Önceki yedek sonuçlar taşınmaz; sadece gerçek analiz
        prior = latest_analysis_row(rows)
        reason = f"analysis timed out after {self.config.recovery_cap} recovery pass(es)"
        logger.warning("Job %s: %s, storing fallback result", job.job_id, reason)
        analysis = ChartAnalysis.fallback_from(prior.data() if prior else None, prior.tf if prior else None, reason)
        return AnalysisDegraded(analysis=analysis, reason="timeout_fallback")

    @staticmethod
    def _finalize(result: AnalysisResult) -> ChartAnalysis:
        if isinstance(result, AnalysisDegraded) and result.reason.startswith("needs_update"):
            return result.analysis.with_hold_for_update()
        return result.analysis

    # --- outcomes ---

    def _complete(self, job: AnalysisJob, analysis: ChartAnalysis) -> ProcessResult:
        tf = analysis.detected_tf
        now = self.clock()
        self.results.save(job.user_id, tf, now, self.results.readable(now), analysis.to_storage())
        if not self.jobs.mark_done(job.job_id, tf):
            # Başka bir çağrı işi kapatmış; tekrar işlem yapılmaz
            return ProcessResult(job_id=job.job_id, outcome=JobOutcome.DONE, result_tf=tf)
        stats = self.jobs.stats(job.user_id)
        self._marker(
            job.user_id,
            status="done",
            job_id=job.job_id,
            result_tf=tf,
            remaining_queued=stats.queued_count,
            fallback=analysis.fallback,
            recovered=analysis.recovered,
        )
        self.cache.cleanup(job.user_id, job.job_id)
        logger.info("Job %s done (tf=%s, remaining=%s)", job.job_id, tf, stats.queued_count)
        self._continue_chain(job.user_id, stats)
        return ProcessResult(
            job_id=job.job_id,
            outcome=JobOutcome.DONE,
            result_tf=tf,
            fallback=analysis.fallback,
            recovered=analysis.recovered,
        )

    def _retry_or_fail(self, job: AnalysisJob, message: str) -> ProcessResult:
        next_attempt = job.attempt + 1
        if next_attempt > self.config.max_attempts:
            return self._fail(job, f"Retries exhausted ({job.attempt}/{self.config.max_attempts}): {message}")
        if not self.jobs.requeue(job.job_id, next_attempt, message):
            return ProcessResult(job_id=job.job_id, outcome=JobOutcome.RETRYING, error=message)
        self._marker(
            job.user_id,
            status="retrying",
            job_id=job.job_id,
            attempt=next_attempt,
            max_attempts=self.config.max_attempts,
            last_error=message[:ERROR_MESSAGE_MAX],
        )
        logger.warning("Job %s requeued (attempt %s/%s): %s", job.job_id, next_attempt, self.config.max_attempts, message)
        self.trigger.fire(job.user_id)
        return ProcessResult(job_id=job.job_id, outcome=JobOutcome.RETRYING, error=message)

    def _fail(self, job: AnalysisJob, message: str) -> ProcessResult:
        self.jobs.mark_error(job.job_id, message)
        logger.error("Job %s failed: %s", job.job_id, message[:ERROR_MESSAGE_MAX])
        self._marker(job.user_id, status="error", job_id=job.job_id, attempt=job.attempt, error=message[:ERROR_MESSAGE_MAX])
        # Bir işin kalıcı hatası kullanıcının geri kalan kuyruğunu durdurmaz
        self._continue_chain(job.user_id)
        return ProcessResult(job_id=job.job_id, outcome=JobOutcome.ERROR, error=message)

    def _continue_chain(self, user_id: str, stats: QueueStats | None = None) -> None:
        queued = stats.queued_count if stats is not None else int(self.jobs.has_queued(user_id))
        if queued > 0:
            self.trigger.fire(user_id)

    def _marker(self, user_id: str, **payload) -> None:
        try:
            self.results.save_marker(user_id, payload)
        except StoreUnavailable as e:
            logger.warning("Job marker (%s) not written for user=%s: %s", payload.get("status"), user_id, e)
