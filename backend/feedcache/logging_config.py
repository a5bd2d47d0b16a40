"""Process logging for the API, the maintenance scheduler and migrations."""

import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, Optional

# Refresh batches and scheduler jobs log from worker threads.
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] [%(name)s] %(message)s"

TASK_LOGGERS = ("feedcache.scheduler", "feedcache.feed_tasks")
TELEMETRY_LOGGER = "feedcache.telemetry"


def _env_level(name: str, default: str) -> str:
    return os.getenv(name, default).strip().upper() or default


def build_logging_config(level: Optional[str] = None) -> Dict[str, Any]:
    """Return the ``dictConfig`` mapping for the current FEEDCACHE_* flags."""
    root_level = (level or _env_level("FEEDCACHE_LOG_LEVEL", "INFO")).upper()
    task_level = _env_level("FEEDCACHE_TASK_LOG_LEVEL", root_level)
    telemetry_level = _env_level("FEEDCACHE_TELEMETRY_LOG_LEVEL", "INFO")
    sql_level = "INFO" if os.getenv("FEEDCACHE_DEBUG_SQL", "0") == "1" else "WARNING"

    loggers: Dict[str, Any] = {name: {"level": task_level} for name in TASK_LOGGERS}
    loggers[TELEMETRY_LOGGER] = {"level": telemetry_level}
    loggers["sqlalchemy.engine"] = {"level": sql_level}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": DEFAULT_LOG_FORMAT},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "loggers": loggers,
        "root": {
            "handlers": ["default"],
            "level": root_level,
        },
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process logging from FEEDCACHE_* environment flags.

    ``level`` overrides ``FEEDCACHE_LOG_LEVEL``. Scheduler and task loggers
    follow ``FEEDCACHE_TASK_LOG_LEVEL`` and telemetry lines follow
    ``FEEDCACHE_TELEMETRY_LOG_LEVEL`` so either can be quietened alone.
    """
    dictConfig(build_logging_config(level))

    if os.getenv("FEEDCACHE_DEBUG_HTTP", "0") == "1":
        logging.getLogger("httpx").setLevel(logging.DEBUG)
        logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)
    else:
        # Generator calls are already covered by feed_generation telemetry.
        logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["DEFAULT_LOG_FORMAT", "build_logging_config", "configure_logging"]
