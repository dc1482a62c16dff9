import logging
import os
from logging.config import dictConfig
from typing import Any, Dict, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"

_NOISY_LIBRARIES = {
    "SKILLPATH_DEBUG_HTTP": (("httpx", logging.DEBUG), ("httpcore", logging.DEBUG)),
    "SKILLPATH_DEBUG_SQL": (("sqlalchemy.engine", logging.INFO),),
}


def build_logging_config(
    level: str = "INFO",
    *,
    telemetry_level: str = "INFO",
    log_file: Optional[str] = None,
) -> Dict[str, Any]:
    handlers: Dict[str, Any] = {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
        "telemetry": {"class": "logging.StreamHandler", "formatter": "telemetry"},
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_file,
            "encoding": "utf-8",
        }
    root_handlers = ["console", "file"] if log_file else ["console"]
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": DEFAULT_LOG_FORMAT},
            "telemetry": {"format": TELEMETRY_LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            # Telemetry lines are already structured; keep them off the default formatter.
            "skillpath.telemetry": {
                "handlers": ["telemetry"] + (["file"] if log_file else []),
                "level": telemetry_level,
                "propagate": False,
            },
        },
        "root": {"handlers": root_handlers, "level": level},
    }


def configure_logging() -> None:
    """Configure process logging from SKILLPATH_* environment flags."""
    dictConfig(
        build_logging_config(
            os.getenv("SKILLPATH_LOG_LEVEL", "INFO").upper(),
            telemetry_level=os.getenv("SKILLPATH_TELEMETRY_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("SKILLPATH_LOG_FILE") or None,
        )
    )
    for flag, loggers in _NOISY_LIBRARIES.items():
        if os.getenv(flag, "0") == "1":
            for name, level in loggers:
                logging.getLogger(name).setLevel(level)
