"""
Logging configuration for the kubeboot CLI
"""

import logging
import logging.config
from typing import Any, Dict

LEVELS = {"debug", "info", "warning", "error", "critical"}


def get_logging_config(level: str = "info") -> Dict[str, Any]:
    """Get logging configuration routing kubeboot logs through rich."""
    level = level.lower() if level.lower() in LEVELS else "info"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "rich": {
                "format": "%(message)s",
                "datefmt": "[%X]",
            },
        },
        "handlers": {
            "rich": {
                "class": "rich.logging.RichHandler",
                "formatter": "rich",
                "show_path": False,
                "markup": False,
            },
        },
        "loggers": {
            "kubeboot": {
                "handlers": ["rich"],
                "level": level.upper(),
                "propagate": False,
            },
            "httpx": {
                "handlers": ["rich"],
                "level": "WARNING",
                "propagate": False,
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": ["rich"],
        },
    }


def configure_logging(level: str = "info") -> None:
    logging.config.dictConfig(get_logging_config(level))
