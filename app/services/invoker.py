"""
Analiz çağrısı sarmalayıcısı: deadline + iptal sinyali + hata sınıflandırma.

Dış çağrı ayrı bir thread'de koşar; deadline dolunca CancellationToken tetiklenir,
backend'in kaydettiği kapatma fonksiyonları (HTTP istemcisi close) çalışır.
Sonuç her zaman etiketli tiptir: AnalysisSuccess | AnalysisDegraded | AnalysisFailure.
"""
import json
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Protocol

from openai import APITimeoutError

from app.schemas.analysis import (
    AnalysisDegraded,
    AnalysisFailure,
    AnalysisResult,
    AnalysisSuccess,
    ChartAnalysis,
    FailureKind,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
RETRYABLE_SERVER_STATUSES = frozenset({500, 502, 503, 504})


class CancellationToken:
    """İşbirlikçi iptal: cancel() kayıtlı geri çağrıları bir kez çalıştırır."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run(callback)

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            self._run(cb)

    @staticmethod
    def _run(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning("Cancel callback failed: %s", e)


class AnalysisBackend(Protocol):
    def analyze(self, image, context: str, timeout_s: float, cancel: CancellationToken) -> str: ...


class MalformedPayload(ValueError):
    pass


def parse_json_loosely(raw_text: str | None) -> dict:
    """Markdown ``` sarmalayıcılarını atar, metindeki ilk dengeli JSON nesnesini çözer."""
    if not raw_text or not str(raw_text).strip():
        raise MalformedPayload("Empty AI response text")
    cleaned = str(raw_text).replace("```json", "```").replace("```JSON", "```").replace("```", "").strip()
    decoder = json.JSONDecoder()
    start = cleaned.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(cleaned, start)
        except ValueError:
            start = cleaned.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = cleaned.find("{", start + 1)
    raise MalformedPayload("No JSON object found in AI response")


def classify_exception(exc: BaseException) -> AnalysisFailure:
    msg = str(exc)[:500] or type(exc).__name__
    if isinstance(exc, (APITimeoutError, TimeoutError)):
        return AnalysisFailure(kind=FailureKind.TIMEOUT, message=msg)
    status = getattr(exc, "status_code", None)
    if status == RATE_LIMIT_STATUS:
        return AnalysisFailure(kind=FailureKind.RATE_LIMITED, message=f"HTTP {status}: {msg}")
    if status in RETRYABLE_SERVER_STATUSES:
        return AnalysisFailure(kind=FailureKind.SERVER_ERROR, message=f"HTTP {status}: {msg}")
    if isinstance(exc, MalformedPayload):
        return AnalysisFailure(kind=FailureKind.MALFORMED_RESPONSE, message=msg)
    return AnalysisFailure(kind=FailureKind.OTHER, message=msg)


def interpret_payload(raw_text: str) -> AnalysisResult:
    """Ham metin -> normalize sonuç; daha taze TF istenmişse Degraded."""
    try:
        payload = parse_json_loosely(raw_text)
        analysis = ChartAnalysis.from_model_payload(payload)
    except ValueError as e:
        return AnalysisFailure(kind=FailureKind.MALFORMED_RESPONSE, message=str(e)[:500])
    if analysis.request_update_for_tf:
        return AnalysisDegraded(analysis=analysis, reason="needs_update:" + ",".join(analysis.request_update_for_tf))
    return AnalysisSuccess(analysis=analysis)


class AnalysisInvoker:
    def __init__(self, backend: AnalysisBackend, executor: ThreadPoolExecutor | None = None):
        self.backend = backend
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="analysis")

    def invoke(self, image, context: str, deadline_ms: int, cancel: CancellationToken | None = None) -> AnalysisResult:
        cancel = cancel or CancellationToken()
        timeout_s = max(0.001, deadline_ms / 1000)
        future = self._executor.submit(self.backend.analyze, image, context, timeout_s, cancel)
        try:
            raw_text = future.result(timeout=timeout_s)
        except FutureTimeout:
            # Ağ kaynağı bırakılmadan işleyici devam etmez
            cancel.cancel()
            future.cancel()
            logger.warning("Analysis timed out after %sms", deadline_ms)
            return AnalysisFailure(kind=FailureKind.TIMEOUT, message=f"Timeout after {deadline_ms}ms")
        except Exception as e:
            if cancel.cancelled:
                return AnalysisFailure(kind=FailureKind.TIMEOUT, message=f"Cancelled: {str(e)[:500]}")
            failure = classify_exception(e)
            logger.warning("Analysis failed (%s): %s", failure.kind.value, failure.message)
            return failure
        return interpret_payload(raw_text)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
