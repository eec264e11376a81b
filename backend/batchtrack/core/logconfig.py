import logging.config

from batchtrack.core.config import setting

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install the console handler once per process."""
    global _configured
    if _configured:
        return
    logging.config.dictConfig({
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
            "batchtrack": {
                "handlers": ["console"],
                "level": level or setting("LOG_LEVEL"),
                "propagate": True,
            },
        },
    })
    _configured = True
