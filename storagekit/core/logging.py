import sys
from logging.config import dictConfig

# Uvicorn-compatible logging configuration for the storagekit package loggers
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "()": "uvicorn.logging.DefaultFormatter",
            "fmt": "%(levelprefix)s %(asctime)s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "storage": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
    },
    "loggers": {
        "storagekit": {"handlers": ["storage"], "level": "INFO", "propagate": False},
    },
}


def setup_logging(level: str = "INFO") -> None:
    """Configures storagekit logging using dictConfig. Never called on import."""
    config = {**LOGGING_CONFIG, "loggers": {"storagekit": {**LOGGING_CONFIG["loggers"]["storagekit"], "level": level}}}
    dictConfig(config)
