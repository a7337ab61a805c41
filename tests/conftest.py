"""Pytest fixtures: test client, test DB (in-memory SQLite), sahte dış servisler."""
import os

import pytest
from fastapi.testclient import TestClient

# Test ortamında in-memory SQLite (app import edilmeden önce set edilmeli)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-dummy")
os.environ.setdefault("INTERNAL_TASK_TOKEN", "test-internal-token")
os.environ.setdefault("LINE_CHANNEL_SECRET", "test-line-secret")
os.environ.setdefault("LINE_CHANNEL_ACCESS_TOKEN", "test-line-access")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "5")

from app.api import deps  # noqa: E402
from app.core.config import ProcessorConfig  # noqa: E402
from app.core.database import init_db, make_engine  # noqa: E402
from app.main import app  # noqa: E402
from app.schemas.analysis import AnalysisFailure, AnalysisSuccess, ChartAnalysis, FailureKind  # noqa: E402
from app.services.artifact_cache import ArtifactCache  # noqa: E402
from app.services.job_store import JobStore  # noqa: E402
from app.services.line_client import SourceFetchError, SourceImage  # noqa: E402
from app.services.processor import JobProcessor  # noqa: E402
from app.services.result_store import ResultStore  # noqa: E402
from app.services.trade_style import TradeStylePlanner  # noqa: E402

INTERNAL_HEADERS = {"X-Internal-Task-Token": "test-internal-token"}
ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-chart"


class FakeClock:
    """Elle ilerletilen epoch ms saati; her okumada 1 ms ilerler ki sıralama belirli olsun."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeFetcher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    def fetch_content(self, source_ref: str) -> SourceImage:
        self.calls.append(source_ref)
        if self.fail:
            raise SourceFetchError("LINE content error: HTTP 404")
        return SourceImage(data=PNG_BYTES, content_type="image/png")


class ScriptedInvoker:
    """Sonuçları sırayla döner; son sonuç tekrar eder."""

    def __init__(self, *results):
        self.results = list(results)
        self.deadlines: list[int] = []
        self.contexts: list[str] = []

    def invoke(self, image, context, deadline_ms, cancel=None):
        self.deadlines.append(deadline_ms)
        self.contexts.append(context)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class RecordingTrigger:
    def __init__(self):
        self.fired: list[str] = []

    def fire(self, user_id: str):
        self.fired.append(user_id)


class FakeTextBackend:
    """TRADE_STYLE için model yanıtı; istemleri kaydeder."""

    def __init__(self, text: str = '{"user_response_text": "PLAN: WAIT"}'):
        self.text = text
        self.prompts: list[str] = []

    def complete_text(self, system, user, timeout_s):
        self.prompts.append(system)
        return self.text


class FakeLineClient(FakeFetcher):
    def __init__(self, fail: bool = False):
        super().__init__(fail=fail)
        self.replies: list[tuple[str, str]] = []

    def reply_text(self, reply_token: str, text: str) -> bool:
        self.replies.append((reply_token, text))
        return True


def success(tf: str = "H4", **fields) -> AnalysisSuccess:
    return AnalysisSuccess(analysis=ChartAnalysis(detected_tf=tf, **fields))


def failure(kind: FailureKind, message: str = "boom") -> AnalysisFailure:
    return AnalysisFailure(kind=kind, message=message)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    """Her test için ayrı in-memory veritabanı."""
    eng = make_engine("sqlite:///:memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def config():
    return ProcessorConfig(
        analysis_timeout_ms=28000,
        invocation_budget_ms=40000,
        headroom_ratio=0.25,
        max_attempts=3,
        recovery_cap=2,
        prune_keep_count=5,
        est_seconds_per_image=45,
    )


@pytest.fixture
def roomy_config(config):
    """Ana deadline + recovery_cap kadar kurtarma denemesinin tamamı bütçeye sığar."""
    return config.model_copy(update={"invocation_budget_ms": 80000})


@pytest.fixture
def jobs(engine, clock, config):
    return JobStore(engine, clock=clock, prune_keep_count=config.prune_keep_count)


@pytest.fixture
def results(engine, clock):
    return ResultStore(engine, clock=clock)


@pytest.fixture
def cache(engine, clock):
    return ArtifactCache(engine, ttl_seconds=3600, clock=clock)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def trigger():
    return RecordingTrigger()


@pytest.fixture
def invoker():
    return ScriptedInvoker(success("H4"))


@pytest.fixture
def make_processor(jobs, results, cache, fetcher, trigger, config, clock):
    def _make(invoker, **overrides):
        return JobProcessor(
            overrides.get("jobs", jobs),
            results,
            cache,
            invoker,
            overrides.get("fetcher", fetcher),
            trigger,
            overrides.get("config", config),
            clock=clock,
        )

    return _make


@pytest.fixture
def line_client():
    return FakeLineClient()


@pytest.fixture
def text_backend():
    return FakeTextBackend()


@pytest.fixture
def planner(text_backend):
    return TradeStylePlanner(text_backend, timeout_s=5)


@pytest.fixture(scope="function")
def client(engine, config, invoker, line_client, trigger, planner):
    """TestClient; bağımlılıklar test veritabanı ve sahte servislerle değiştirilir."""
    app.dependency_overrides[deps.get_engine] = lambda: engine
    app.dependency_overrides[deps.get_processor_config] = lambda: config
    app.dependency_overrides[deps.get_invoker] = lambda: invoker
    app.dependency_overrides[deps.get_line_client] = lambda: line_client
    app.dependency_overrides[deps.get_trigger] = lambda: trigger
    app.dependency_overrides[deps.get_trade_planner] = lambda: planner
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
