from .config import ProcessorConfig, settings
from .database import init_db

__all__ = ["ProcessorConfig", "settings", "init_db"]
