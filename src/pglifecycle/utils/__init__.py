"""pglifecycle utilities."""

from .logging_utils import (
    configure_logging,
    get_logger,
    is_logging_configured,
    logging_context,
    restore_logging,
)

__all__ = [
    "configure_logging",
    "restore_logging",
    "is_logging_configured",
    "get_logger",
    "logging_context",
]
