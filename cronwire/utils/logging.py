"""Structured logging with JSON format and job-name context support.

Provides:
- JSON-formatted log output for structured logging
- Current job name via ContextVar, set while a firing is dispatched
- Centralized logger configuration
"""

import json
import logging
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cronwire.config import Settings

# Name of the job whose firing is being dispatched on this thread
job_name_var: ContextVar[str] = ContextVar("job_name", default="")


def set_job_name(job_name: str) -> Token:
    """Set the job name for the current context.

    Args:
        job_name: Name of the job being dispatched.

    Returns:
        Token to pass to reset_job_name().
    """
    return job_name_var.set(job_name)


def reset_job_name(token: Token) -> None:
    """Restore the job name that was current before set_job_name()."""
    job_name_var.reset(token)


def get_job_name() -> str:
    """Get the job name for the current context.

    Returns:
        Current job name, or empty string outside a dispatch.
    """
    return job_name_var.get()


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON with timestamp, level, logger name,
    message, thread name, and the job name when logged during a dispatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON-formatted log string.
        """
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        job_name = get_job_name()
        if job_name:
            log_data["job"] = job_name

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance by name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)


def configure_structured_logging(level: int | str = logging.INFO) -> None:
    """Configure structured JSON logging for the application.

    Sets up a StreamHandler with StructuredFormatter and applies
    it to the root logger.

    Args:
        level: Logging level (default: logging.INFO).
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(level)


def configure_plain_logging(level: int | str = logging.INFO) -> None:
    """Configure human readable logging on the root logger."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )


def configure_logging(settings: "Settings") -> None:
    """Configure root logging from the ``log_level`` and ``log_json`` settings.

    Args:
        settings: Engine settings.
    """
    level = settings.log_level.upper()
    if settings.log_json:
        configure_structured_logging(level)
    else:
        configure_plain_logging(level)
