# quillhaven/core/logging.py
import logging
from logging.config import dictConfig

from quillhaven.core.config import settings


def setup_logging(level: str | None = None) -> None:
    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            },
        },
        "loggers": {
            "quillhaven": {
                "handlers": ["console"],
                "level": (level or settings.LOG_LEVEL).upper(),
                "propagate": False,
            },
            # httpx loguea cada request en INFO; lo bajamos
            "httpx": {"level": "WARNING"},
        },
    })
    logging.getLogger("quillhaven").debug("logging configurado (nivel=%s)", level or settings.LOG_LEVEL)
