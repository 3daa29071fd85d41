import logging
import logging.config

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "standard",
        },
    },
    "root": {
        "level": "INFO",
        "handlers": ["console"],
    },
    "loggers": {
        "httpx": {
            "level": "WARNING",
        },
        "aiosqlite": {
            "level": "WARNING",
        },
    },
}


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure application-wide logging."""
    logging.config.dictConfig(LOGGING_CONFIG)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.getLogger().setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the 'plexmate.' namespace."""
    return logging.getLogger(f"plexmate.{name}")
