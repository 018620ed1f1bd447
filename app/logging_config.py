from __future__ import annotations
import os, logging, logging.config
from pathlib import Path

STAGE_LOGGERS = ("hunter", "verifier", "enricher", "writer", "sender")
CLIENT_LOGGERS = ("search", "fetch", "llm", "oracle", "delivery", "store", "orchestrator")

def setup_logging() -> None:
    """
    Configure rich console + rotating file logging using dictConfig.
    Tunables via env:
      LOG_LEVEL=INFO|DEBUG|...
      LOG_FILE=logs/leadflow.log
      LOG_MAX_BYTES=5242880 (5MB)
      LOG_BACKUPS=3
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_file = Path(os.getenv("LOG_FILE", "logs/leadflow.log"))
    log_file.parent.mkdir(parents=True, exist_ok=True)
    max_bytes = int(os.getenv("LOG_MAX_BYTES", "5242880"))
    backups = int(os.getenv("LOG_BACKUPS", "3"))

    handlers = ["console", "file"]
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {
                "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "rich": {"format": "%(name)s | %(message)s", "datefmt": "[%X]"},
        },
        "handlers": {
            "console": {
                "class": "rich.logging.RichHandler",
                "level": level,
                "formatter": "rich",
                "rich_tracebacks": True,
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": str(log_file),
                "maxBytes": max_bytes,
                "backupCount": backups,
                "encoding": "utf-8",
                "level": "DEBUG",
                "formatter": "plain",
            },
        },
        "loggers": {
            "uvicorn.error": {"handlers": handlers, "level": level, "propagate": False},
            "uvicorn.access": {"handlers": handlers, "level": level, "propagate": False},
            **{name: {"handlers": handlers, "level": level, "propagate": False}
               for name in STAGE_LOGGERS + CLIENT_LOGGERS},
        },
        "root": {"handlers": handlers, "level": level},
    }
    logging.config.dictConfig(config)
