"""Analysis invoker: gevşek JSON çözümleme, hata sınıflandırma, deadline + iptal."""
import json
import threading

import httpx
import pytest
from openai import APIStatusError, APITimeoutError, RateLimitError

from app.schemas.analysis import AnalysisDegraded, AnalysisFailure, AnalysisSuccess, FailureKind
from app.services.invoker import (
    AnalysisInvoker,
    CancellationToken,
    MalformedPayload,
    classify_exception,
    interpret_payload,
    parse_json_loosely,
)
from app.services.line_client import SourceImage

IMAGE = SourceImage(data=b"img", content_type="image/png")
GOOD_PAYLOAD = {
    "detected_tf": "d1",
    "tfs_used_for_confluence": ["1W", "D1"],
    "request_update_for_tf": [],
    "reasoning_trace": ["P1: up", "Decision: BUY"],
    "detailed_technical_data": {
        "trend_bias": "Bullish",
        "priority_1_structure": {"market_structure": "HH/HL"},
        "setup": {"action": "BUY", "confidence": "Medium"},
    },
    "user_response_text": "BUY 1D",
}


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls(f"HTTP {status}", response=response, body=None)


class StubBackend:
    def __init__(self, text: str | None = None, exc: Exception | None = None, block: bool = False):
        self.text = text
        self.exc = exc
        self.block = block
        self.released = threading.Event()

    def analyze(self, image, context, timeout_s, cancel: CancellationToken):
        if self.block:
            cancel.on_cancel(self.released.set)
            self.released.wait(5)
            raise TimeoutError("connection closed")
        if self.exc:
            raise self.exc
        return self.text


def test_parse_strips_markdown_fences():
    raw = "Here you go:\n```json\n" + json.dumps(GOOD_PAYLOAD) + "\n```"
    assert parse_json_loosely(raw)["detected_tf"] == "d1"


def test_parse_takes_first_balanced_object():
    raw = 'noise {not json} then {"a": {"b": 1}} trailing {"c": 2}'
    assert parse_json_loosely(raw) == {"a": {"b": 1}}


@pytest.mark.parametrize("raw", ["", "   ", "no braces at all", "[1, 2, 3]"])
def test_parse_rejects_payloads_without_object(raw):
    with pytest.raises(MalformedPayload):
        parse_json_loosely(raw)


def test_interpret_success_normalizes_fields():
    result = interpret_payload(json.dumps(GOOD_PAYLOAD))
    assert isinstance(result, AnalysisSuccess)
    a = result.analysis
    assert a.detected_tf == "1D"
    assert a.tfs_used_for_confluence == ["1W", "1D"]
    assert a.trade_setup["action"] == "BUY"
    assert a.structure == {"market_structure": "HH/HL"}
    assert a.trend_bias == "Bullish"


def test_interpret_update_request_is_degraded():
    payload = {**GOOD_PAYLOAD, "request_update_for_tf": "h4"}
    result = interpret_payload(json.dumps(payload))
    assert isinstance(result, AnalysisDegraded)
    assert result.reason == "needs_update:H4"
    assert result.analysis.request_update_for_tf == ["H4"]


def test_interpret_garbage_is_malformed():
    result = interpret_payload("I cannot analyze this image.")
    assert isinstance(result, AnalysisFailure)
    assert result.kind == FailureKind.MALFORMED_RESPONSE
    assert not result.retryable


def test_classify_exceptions():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    assert classify_exception(APITimeoutError(request=request)).kind == FailureKind.TIMEOUT
    assert classify_exception(_status_error(RateLimitError, 429)).kind == FailureKind.RATE_LIMITED
    server = classify_exception(_status_error(APIStatusError, 503))
    assert server.kind == FailureKind.SERVER_ERROR and server.retryable
    assert classify_exception(_status_error(APIStatusError, 401)).kind == FailureKind.OTHER
    assert classify_exception(ConnectionError("reset")).kind == FailureKind.OTHER


def test_invoke_success():
    invoker = AnalysisInvoker(StubBackend(text=json.dumps(GOOD_PAYLOAD)))
    result = invoker.invoke(IMAGE, "ctx", 2000)
    assert isinstance(result, AnalysisSuccess)


def test_invoke_retryable_failure():
    invoker = AnalysisInvoker(StubBackend(exc=_status_error(RateLimitError, 429)))
    result = invoker.invoke(IMAGE, "ctx", 2000)
    assert result.kind == FailureKind.RATE_LIMITED
    assert result.retryable


def test_invoke_timeout_cancels_inflight_call():
    backend = StubBackend(block=True)
    invoker = AnalysisInvoker(backend)
    token = CancellationToken()
    result = invoker.invoke(IMAGE, "ctx", 50, token)
    assert result.kind == FailureKind.TIMEOUT
    assert token.cancelled
    assert backend.released.wait(1)


def test_cancel_token_runs_late_callbacks_immediately():
    token = CancellationToken()
    token.cancel()
    hit = []
    token.on_cancel(lambda: hit.append(1))
    token.cancel()
    assert hit == [1]
