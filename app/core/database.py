import logging
from functools import wraps

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from .config import settings
from .errors import StoreUnavailable

log = logging.getLogger(__name__)


def _normalized_database_url(raw_url: str) -> str:
    """
    DATABASE_URL normalizasyonu:
    - postgres:// veya postgresql:// ise psycopg3 dialekti ile çalışacak şekilde dönüştür.
    - Diğer tüm durumlarda olduğu gibi bırak (SQLite vs.).
    """
    if not raw_url:
        return "sqlite:///./chartline.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


def make_engine(url: str) -> Engine:
    """SQLite için thread ayarı; in-memory ise tek bağlantı (StaticPool) ki tablolar her oturumda görünsün."""
    url = _normalized_database_url(url)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    use_static_pool = url.startswith("sqlite") and ":memory:" in url
    return create_engine(
        url,
        connect_args=connect_args,
        poolclass=StaticPool if use_static_pool else None,
    )


DATABASE_URL = _normalized_database_url(settings.database_url)
engine = make_engine(DATABASE_URL)


def init_db(bind: Engine | None = None) -> None:
    # Modeller metadata'ya kayıtlı olsun
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def store_op(fn):
    """SQLAlchemy hatalarını StoreUnavailable olarak yukarı taşır."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as e:
            log.error("Store %s failed: %s", fn.__name__, str(e)[:500])
            raise StoreUnavailable(f"{fn.__name__}: {str(e)[:500]}") from e

    return wrapper
