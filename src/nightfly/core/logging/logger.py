"""
NightflyLogger - структурный логгер клиента.

Все extra поля проходят через sanitizer до записи: Authorization, Cookie,
Proxy-Authorization и credentials в URL не попадают в логи.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, List, Optional

from .config import LoggingConfig, LogLevel
from .filters import CorrelationIdFilter, ExtraFieldsFilter
from .formatters import get_formatter
from ...utils.sanitizer import mask_sensitive_data


class NightflyLogger:
    """
    Логгер с console/file handlers.

    Example:
        >>> logger = NightflyLogger(LoggingConfig.create(level="DEBUG", format="json"))
        >>> logger.info("Request started", method="GET", url="https://api.example.com")
    """

    def __init__(self, config: Optional[LoggingConfig] = None):
        self.config = config or LoggingConfig()
        self._closed = False

        self._logger = logging.getLogger(self.config.logger_name)
        self._logger.setLevel(self._level(self.config.level))
        self._logger.propagate = False
        self._logger.handlers.clear()

        filters: List[logging.Filter] = []
        if self.config.enable_correlation_id:
            filters.append(CorrelationIdFilter())
        if self.config.extra_fields:
            filters.append(ExtraFieldsFilter(self.config.extra_fields))

        formatter = get_formatter(self.config.format.value)

        if self.config.enable_console:
            self._add_handler(logging.StreamHandler(sys.stderr), formatter, filters)

        if self.config.enable_file and self.config.file_path:
            Path(self.config.file_path).parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=self.config.file_path,
                maxBytes=self.config.max_bytes,
                backupCount=self.config.backup_count,
                encoding="utf-8",
            )
            self._add_handler(handler, formatter, filters)

    @staticmethod
    def _level(level: LogLevel) -> int:
        return getattr(logging, level.value)

    def _add_handler(self, handler: logging.Handler, formatter: logging.Formatter,
                     filters: List[logging.Filter]) -> None:
        handler.setLevel(self._level(self.config.level))
        handler.setFormatter(formatter)
        for f in filters:
            handler.addFilter(f)
        self._logger.addHandler(handler)

    @property
    def handlers(self) -> List[logging.Handler]:
        return list(self._logger.handlers)

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def log(self, level: int, message: str, **kwargs: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, message, extra=mask_sensitive_data(kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Ошибка с traceback (вызывать из except блока)."""
        self._logger.exception(message, extra=mask_sensitive_data(kwargs))

    def close(self) -> None:
        """Закрыть handlers (идемпотентно)."""
        if self._closed:
            return
        for handler in self._logger.handlers[:]:
            handler.flush()
            handler.close()
            self._logger.removeHandler(handler)
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
