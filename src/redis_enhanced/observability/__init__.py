"""Logging for redis-enhanced."""

from redis_enhanced.observability.logging import (
    StructuredFormatter,
    configure_logging,
    get_logger,
)

__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
]
