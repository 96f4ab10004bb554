import logging.config
import logging.handlers
from pathlib import Path

from .config import Settings

AUDIT_OPS_LOGGER = "docguard.audit.ops"


def configure_logging(settings: Settings) -> None:
    """Console logging, plus rotating files when a log directory is configured."""
    log_level = settings.log_level.upper()
    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": log_level,
        },
    }
    root_handlers = ["console"]
    ops_handlers = ["console"]

    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": log_level,
            "filename": str(log_dir / "docguard.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
        handlers["audit_ops"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": "WARNING",
            "filename": str(log_dir / "audit-ops.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
        root_handlers.append("file")
        ops_handlers.append("audit_ops")

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            }
        },
        "handlers": handlers,
        "root": {
            "handlers": root_handlers,
            "level": log_level,
        },
        "loggers": {
            AUDIT_OPS_LOGGER: {
                "handlers": ops_handlers,
                "level": "WARNING",
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": root_handlers,
                "level": log_level,
                "propagate": False,
            },
            "uvicorn.error": {
                "handlers": root_handlers,
                "level": log_level,
                "propagate": False,
            },
        },
    })
