"""
Logging Configuration
Builds one dictConfig from Settings and applies it at process start

Noise from chatty libraries is handled here, scoped to our handler:
- QUIET_LOGGERS are raised to WARNING
- SUPPRESSED_LOG_PATTERNS drop matching records at the handler
Nothing patches sys.stdout/sys.stderr or the logging module globals.
"""
import logging
import logging.config
from typing import Any, Dict, Iterable

from app.core.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SuppressPatternsFilter(logging.Filter):
    """Drop records whose rendered message contains a configured substring."""

    def __init__(self, patterns: Iterable[str] = ()):
        super().__init__()
        self.patterns = tuple(p for p in patterns if p)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.patterns:
            return True
        message = record.getMessage()
        return not any(p in message for p in self.patterns)


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    """
    Build a dictConfig for the given settings.

    Args:
        settings: Validated application settings

    Returns:
        Dictionary accepted by logging.config.dictConfig
    """
    level = settings.log_level.upper()
    if settings.environment != "production" and settings.debug:
        level = "DEBUG"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "suppress_patterns": {
                "()": SuppressPatternsFilter,
                "patterns": list(settings.suppressed_log_patterns),
            }
        },
        "formatters": {
            "default": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "filters": ["suppress_patterns"],
            }
        },
        "loggers": {
            name: {"level": "WARNING"} for name in settings.quiet_loggers
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def configure_logging(settings: Settings) -> None:
    """Apply the logging config. Called once from main.py / worker.py."""
    logging.config.dictConfig(build_logging_config(settings))
