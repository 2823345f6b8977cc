"""Logging setup and structured logging helpers."""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any, Optional

# =============================================================================
# Structured Logging Helpers
# =============================================================================


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that supports structured logging with extra fields.

    Usage:
        logger = get_structured_logger(__name__)
        logger.info("Refresh complete", reason="scheduled", sensors=7)
        logger.warning("Fetch failed", error="timeout")
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Process log message and extract extra fields."""
        standard_kwargs = {"exc_info", "stack_info", "stacklevel", "extra"}
        extra = kwargs.pop("extra", {})

        # Move non-standard kwargs to extra
        for key in list(kwargs.keys()):
            if key not in standard_kwargs:
                extra[key] = kwargs.pop(key)

        if self.extra:
            extra = {**self.extra, **extra}

        kwargs["extra"] = extra
        return msg, kwargs


def get_structured_logger(name: str, **default_extra: Any) -> StructuredLoggerAdapter:
    """
    Get a structured logger that supports extra keyword arguments.

    Args:
        name: Logger name (usually __name__)
        **default_extra: Default extra fields to include in all logs

    Returns:
        A StructuredLoggerAdapter instance

    Example:
        logger = get_structured_logger(__name__, component="cache")
        logger.info("Cache written", sensors=7)
    """
    base_logger = logging.getLogger(name)
    return StructuredLoggerAdapter(base_logger, default_extra)


class ExtraFieldsFormatter(logging.Formatter):
    """Formatter that appends structured extra fields as ``key=value`` pairs."""

    _standard_attrs = frozenset(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
        | {"message", "asctime", "taskName"}
    )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._standard_attrs
        }
        if not fields:
            return message
        rendered = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{message} [{rendered}]"


def setup_logging(level: str, log_file: Optional[str]) -> None:
    """Configure logging handlers"""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    # Add file handler if log file is specified and writable
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except (PermissionError, FileNotFoundError):
            print(
                f"Warning: Cannot write to {log_file}, logging to stdout only",
                file=sys.stderr,
            )

    formatter = ExtraFieldsFormatter("%(asctime)s - %(levelname)s - %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
