import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

from swap_engine.config.settings import Config
from swap_engine.logging.formatters import JSONFormatter, PrettyFormatter

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Third-party loggers that drown out order transitions at INFO.
QUIET_LOGGERS = ("aiohttp", "sqlalchemy.engine", "asyncpg", "redis", "uvicorn.access")


class EngineLogger:
    """
    Logger with context support.

    Module code logs through ``logging.getLogger(__name__)``; every such logger
    lives under the ``swap_engine`` hierarchy, so handlers installed here by
    ``setup`` apply to all of them. ``with_context`` is used where a line of
    work (an order, a job attempt) should stamp every record it emits.
    """

    def __init__(self, name: str = "swap_engine"):
        self.logger = logging.getLogger(name)
        self._context: Dict[str, Any] = {}
        self._setup_done = False

    def setup(self, config: Config):
        """Install console and file handlers on the ``swap_engine`` logger tree."""
        if self._setup_done:
            return

        self.logger.setLevel(config.log_level)
        self.logger.propagate = False
        self.logger.handlers.clear()

        self.logger.addHandler(self._console_handler(config))
        if config.log_file:
            try:
                self.logger.addHandler(self._file_handler(config))
            except OSError as e:
                self.logger.warning(f"File logging disabled: {e}", log_file=config.log_file)

        for noisy in QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

        self._setup_done = True

    @staticmethod
    def _console_handler(config: Config) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        use_json = config.log_json if config.log_json is not None else config.env == "production"
        if use_json:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(PrettyFormatter(CONSOLE_FORMAT))
        return handler

    @staticmethod
    def _file_handler(config: Config) -> logging.Handler:
        log_dir = os.path.dirname(config.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.log_file_max_mb * 1024 * 1024,
            backupCount=config.log_file_backups,
        )
        handler.setFormatter(JSONFormatter())
        handler.setLevel(logging.DEBUG)
        return handler

    def with_context(self, **kwargs) -> "EngineLogger":
        """Return logger with additional context"""
        new_logger = EngineLogger(self.logger.name)
        new_logger.logger = self.logger
        new_logger._context = {**self._context, **kwargs}
        new_logger._setup_done = self._setup_done
        return new_logger

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def _log(self, level: int, msg: str, exc_info: bool = False, **kwargs):
        # Merge context
        extra_data = {**self._context, **kwargs}
        if extra_data:
            extra = {"extra_data": extra_data}
        else:
            extra = {}
        self.logger.log(level, msg, extra=extra, exc_info=exc_info)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, **kwargs)

    def exception(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, exc_info=True, **kwargs)

    def critical(self, msg: str, **kwargs):
        self._log(logging.CRITICAL, msg, **kwargs)

    def transition(self, status: str, **kwargs):
        """Log an order status transition (always logged)"""
        self.info(f"ORDER: {status}", transition=status, **kwargs)


# Singleton
logger = EngineLogger()


def setup_logging(config: Config):
    """Initialize logging"""
    logger.setup(config)
