"""
Logging yapılandırması.
Uvicorn ve app logger seviyeleri; beklenmeyen hatalarda logger.exception kullanılır.
"""
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: int | str = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout, force=True)
    # Uvicorn loggers: access ve error seviyelerini uyumlu tut
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    # app loggers
    logging.getLogger("chartline").setLevel(level)
    logging.getLogger("app").setLevel(level)
