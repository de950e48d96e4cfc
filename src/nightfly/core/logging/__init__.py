"""
Структурное логирование nightfly.

Без LoggingConfig библиотека пишет только в logging.getLogger("nightfly")
с NullHandler; NightflyLogger включается через ClientConfig(logging=...).

Example:
    >>> from nightfly.core.logging import LoggingConfig
    >>> config = ClientConfig(logging=LoggingConfig.create(level="DEBUG", format="json"))
"""

from .config import LoggingConfig, LogLevel, LogFormat
from .filters import (
    CorrelationIdFilter,
    ExtraFieldsFilter,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from .formatters import JSONFormatter, TextFormatter, get_formatter
from .logger import NightflyLogger

__all__ = [
    "LoggingConfig",
    "LogLevel",
    "LogFormat",
    "NightflyLogger",
    "JSONFormatter",
    "TextFormatter",
    "get_formatter",
    "CorrelationIdFilter",
    "ExtraFieldsFilter",
    "set_correlation_id",
    "get_correlation_id",
    "reset_correlation_id",
]
