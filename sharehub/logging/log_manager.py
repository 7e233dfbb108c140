"""
Log manager for ShareHub.

Singleton that applies a logging.config.dictConfig dictionary exactly once
per process. The API server and the offload worker each create their own.
"""

from __future__ import annotations

import logging
import logging.config
import os


class LogManager:
    """
    Singleton class to manage logging configuration and provide logger instances.

    Attributes:
        _instance (LogManager | None): Singleton instance of LogManager
        logger_settings (dict): Logging configuration settings
    """

    _instance: 'LogManager' | None = None

    def __init__(self, logger_settings: dict | None):
        """
        Apply logging settings.

        Args:
            logger_settings (dict): Dictionary for logging.config.dictConfig
        """
        self.logger_settings = dict(logger_settings or {})
        if not self.logger_settings.get('handlers'):
            # Nothing usable configured, keep whatever the process already has
            return

        self.logger_settings.setdefault('version', 1)

        # File handlers need their directory to exist before dictConfig runs
        for handler in self.logger_settings['handlers'].values():
            filename = handler.get('filename') if isinstance(handler, dict) else None
            if filename and os.path.dirname(filename):
                os.makedirs(os.path.dirname(filename), exist_ok=True)

        try:
            logging.config.dictConfig(self.logger_settings)
        except (ValueError, TypeError, AttributeError, ImportError) as e:
            logging.basicConfig(level=logging.INFO)
            logging.warning(
                f"Failed to configure logging with provided settings: {e}")

    @classmethod
    def get_instance(cls, logger_settings: dict | None = None) -> 'LogManager':
        """
        Get the singleton instance of LogManager.

        Args:
            logger_settings (dict, optional): Used only on first call
        """
        if cls._instance is None:
            cls._instance = cls(logger_settings)
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Forget the singleton (for testing)."""
        cls._instance = None

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger instance by name."""
        return logging.getLogger(name)
