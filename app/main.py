import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Uvicorn nereden çalışırsa çalışsın .env proje kökünden yüklensin
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request  # noqa: E402
from fastapi.exceptions import RequestValidationError  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from slowapi.errors import RateLimitExceeded  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlmodel import Session  # noqa: E402

from app.api.admin import router as admin_router  # noqa: E402
from app.api.internal import router as internal_router  # noqa: E402
from app.api.queue import router as queue_router  # noqa: E402
from app.api.webhook import router as webhook_router  # noqa: E402
from app.core.clock import now_ms  # noqa: E402
from app.core.config import is_openai_configured, settings  # noqa: E402
from app.core.database import engine, init_db  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.logging import setup_logging  # noqa: E402
from app.models import ErrorLog  # noqa: E402
from app.services.trigger import shutdown_dispatch_pool  # noqa: E402

setup_logging(level=logging.INFO)
log = logging.getLogger("chartline")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("OpenAI configured: %s", "yes" if is_openai_configured() else "NO (.env dosyasına OPENAI_API_KEY=sk-... ekleyin)")
    log.info("Internal task token: %s", "set" if settings.internal_task_token else "not set (self-trigger unauthenticated)")
    yield
    # Bekleyen self-trigger gönderimleri süreç kapanmadan tamamlanır
    shutdown_dispatch_pool(wait=True)


app = FastAPI(
    title="Chartline API",
    description="LINE grafik analiz botu: kullanıcı başına FIFO analiz kuyruğu",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("Rate limit exceeded: path=%s", request.url.path)
    rid = getattr(request.state, "request_id", None)
    body = {"error": "Too many requests", "status_code": 429, "detail": str(exc.detail)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=429, content=body)


def jsonable_errors(errs) -> list[dict]:
    return [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs]


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning("Request validation error (422): path=%s method=%s detail=%s", request.url.path, request.method, errs)
    rid = getattr(request.state, "request_id", None)
    body = {"error": "Geçersiz istek.", "status_code": 422, "detail": jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc)
    try:
        with Session(engine) as db:
            db.add(
                ErrorLog(
                    endpoint=request.url.path,
                    method=request.method,
                    error_message=str(exc)[:2000],
                    stack_trace=traceback.format_exc()[:10000],
                    created_at=now_ms(),
                )
            )
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Beklenmeyen sunucu hatası.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(internal_router)
app.include_router(webhook_router)
app.include_router(queue_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    database = "ok"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        log.warning("Health DB check failed: %s", e)
        database = "error"
    return {"status": "ok", "openai_configured": is_openai_configured(), "database": database}
