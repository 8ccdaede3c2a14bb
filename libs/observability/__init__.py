"""Structured logging and request correlation."""

from .config import LoggingSettings
from .logging import (
    configure_structured_logging,
    get_correlation_id,
    set_correlation_id,
)
from .middleware import CorrelationMiddleware

__all__ = [
    "LoggingSettings",
    "configure_structured_logging",
    "get_correlation_id",
    "set_correlation_id",
    "CorrelationMiddleware",
]
