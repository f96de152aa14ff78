"""
Central logging setup for the harness.

Installs a single masked stream handler on the ``pglifecycle`` logger and
remembers the logger's previous state so it can be restored (tests, nested
runs). All modules log through children of ``pglifecycle``.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from ..core.logging_config import LoggingConfig, SensitiveMaskingFilter

ROOT_LOGGER = "pglifecycle"

# Quiet third-party loggers that would otherwise echo connection details
_NOISY_LOGGERS = ("asyncpg",)

_logging_configured: bool = False
_original_state: Dict[str, Any] = {}


def configure_logging(
    config: Optional[LoggingConfig] = None,
    level: Optional[int] = None,
    stream=None,
) -> logging.Handler:
    """Configure the ``pglifecycle`` logger.

    Args:
        config: LoggingConfig instance. Defaults to LoggingConfig.from_env().
        level: Explicit level, overrides ``config.level``.
        stream: Output stream (default: stderr).

    Returns:
        The installed handler.

    Usage:
        configure_logging()                       # from environment
        configure_logging(level=logging.DEBUG)    # --log-level DEBUG
    """
    global _logging_configured

    if config is None:
        config = LoggingConfig.from_env()
    effective_level = level if level is not None else config.level

    if _logging_configured:
        restore_logging()

    logger = logging.getLogger(ROOT_LOGGER)
    _original_state[ROOT_LOGGER] = {
        "level": logger.level,
        "propagate": logger.propagate,
    }
    for name in _NOISY_LOGGERS:
        _original_state[name] = {"level": logging.getLogger(name).level}
        logging.getLogger(name).setLevel(logging.WARNING)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(config.format))
    if config.mask_sensitive:
        handler.addFilter(SensitiveMaskingFilter(config))

    logger.addHandler(handler)
    logger.setLevel(effective_level)
    logger.propagate = False
    _original_state["handler"] = handler

    _logging_configured = True
    logger.debug(
        "pglifecycle logging configured: level=%s",
        logging.getLevelName(effective_level),
    )
    return handler


def restore_logging() -> None:
    """Remove the installed handler and restore previous logger state.

    Safe to call multiple times.
    """
    global _logging_configured

    logger = logging.getLogger(ROOT_LOGGER)
    handler = _original_state.pop("handler", None)
    if handler is not None:
        logger.removeHandler(handler)
        handler.close()

    for name, state in _original_state.items():
        target = logging.getLogger(name)
        target.setLevel(state["level"])
        if "propagate" in state:
            target.propagate = state["propagate"]

    _original_state.clear()
    _logging_configured = False


def is_logging_configured() -> bool:
    return _logging_configured


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``pglifecycle`` prefix.

    ``get_logger("workflow")`` and ``get_logger("pglifecycle.workflow")``
    return the same logger.
    """
    if not name or name == ROOT_LOGGER:
        return logging.getLogger(ROOT_LOGGER)
    if name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


@contextmanager
def logging_context(
    config: Optional[LoggingConfig] = None,
    level: Optional[int] = None,
    stream=None,
) -> Iterator[logging.Handler]:
    """Apply logging configuration for the duration of a block."""
    handler = configure_logging(config=config, level=level, stream=stream)
    try:
        yield handler
    finally:
        restore_logging()
