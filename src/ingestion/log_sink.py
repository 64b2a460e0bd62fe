"""Per-job progress sink consumed by the crawl log display."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LogSink(Protocol):
    def log(self, job_id: str, message: str, level: str = "info") -> None: ...


class LoggingSink:
    """Default sink: forwards job events to the standard logger."""

    def log(self, job_id: str, message: str, level: str = "info") -> None:
        logger.log(_LEVELS.get(level, logging.INFO), "[job %s] %s", job_id, message)
