"""
Logging setup for ShareHub.

Logging is initialised after configuration is loaded, never during it,
so the config module can log through the plain stdlib logger.

Usage:
    from sharehub.logging.setup import setup_logging, get_logger
    from sharehub.config.settings import get_config_manager

    config_manager = get_config_manager()
    config_manager.load()
    setup_logging(config_manager.logging_config)

    logger = get_logger(__name__)
"""

from __future__ import annotations

import logging
from typing import Any

from sharehub.logging.log_manager import LogManager


_logging_configured = False
_log_manager: LogManager | None = None

_FALLBACK_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(logging_config: dict[str, Any]) -> None:
    """
    Initialize logging system with configuration.

    Args:
        logging_config: Dictionary for logging.config.dictConfig
    """
    global _logging_configured, _log_manager

    if _logging_configured:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping re-initialization")
        return

    _log_manager = LogManager.get_instance(logging_config)
    _logging_configured = True

    logging.getLogger(__name__).info("Logging system initialized")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Before setup_logging() has run, the returned logger gets a console
    handler of its own so early messages are not lost.

    Args:
        name: Name for the logger (typically __name__)
    """
    if _logging_configured and _log_manager is not None:
        return _log_manager.get_logger(name)

    logger = logging.getLogger(name)
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FALLBACK_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def is_logging_configured() -> bool:
    """Check if setup_logging() has been called."""
    return _logging_configured


def reset_logging():
    """
    Reset logging configuration.

    This is mainly useful for testing.
    """
    global _logging_configured, _log_manager
    _logging_configured = False
    _log_manager = None
    LogManager.reset_instance()
