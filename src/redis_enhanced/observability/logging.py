"""
Structured Logging for redis-enhanced.

Modules log through ``logging.getLogger(__name__)`` and attach context as
``extra={"extra_fields": {...}}`` (component, operation, identifiers).
StructuredFormatter renders those records as JSON lines.
"""

import json
import logging
import re
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

# Matches CR, LF, null bytes, and other control chars except tab
_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

PACKAGE_LOGGER = "redis_enhanced"


def _sanitize_log_message(message: str) -> str:
    """
    Escape line breaks and strip control characters.

    Keys and values coming back from the store are logged verbatim, so a
    value containing a newline must not be able to forge a second log line.
    """
    if not isinstance(message, str):
        message = str(message)

    message = message.replace("\r\n", "\\r\\n")
    message = message.replace("\n", "\\n")
    message = message.replace("\r", "\\r")

    return _CONTROL_CHAR_PATTERN.sub("", message)


@dataclass
class LogContext:
    """Structured log context."""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    level: str = "INFO"
    logger: str = PACKAGE_LOGGER
    message: str = ""
    extra: dict = field(default_factory=dict)

    def to_json(self) -> str:
        """Convert to JSON string."""
        data = asdict(self)
        # Flatten extra into main dict
        extra = data.pop("extra", {})
        data.update(extra)
        return json.dumps(data, default=str)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        ctx = LogContext(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=_sanitize_log_message(record.getMessage()),
        )

        if hasattr(record, "extra_fields"):
            ctx.extra = dict(record.extra_fields)

        if record.exc_info:
            ctx.extra["exception"] = self.formatException(record.exc_info)

        return ctx.to_json()


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Configure logging for redis-enhanced.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format (default: True)
        log_file: Optional file path for logs (always JSON)
    """
    numeric_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)

    if json_output:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            )
        )

    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(numeric_level)
    # redis-py logs every reconnect at INFO
    logging.getLogger("redis").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with structured output.

    Args:
        name: Logger name (usually __name__)
    """
    return logging.getLogger(name)
