"""setup_logging: tek format, seviye tüm uygulama logger'larına uygulanır."""
import logging

from app.logging import LOG_FORMAT, setup_logging


def test_setup_logging_applies_level_and_format():
    try:
        setup_logging(logging.WARNING)
        for name in ("chartline", "app", "uvicorn.access"):
            assert logging.getLogger(name).level == logging.WARNING
        assert any(h.formatter and h.formatter._fmt == LOG_FORMAT for h in logging.getLogger().handlers)
    finally:
        setup_logging(logging.INFO)
