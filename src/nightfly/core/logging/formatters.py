"""
Форматтеры: JSON для машин, text для людей.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Стандартные атрибуты LogRecord, которые не считаются extra полями
_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Поля, переданные через extra=..."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_FIELDS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    Одна JSON строка на запись.

    Example output:
        {"timestamp": "2024-01-15T10:30:45.123000+00:00", "level": "INFO",
         "logger": "nightfly.client", "message": "Request finished",
         "method": "GET", "status_code": 200}
    """

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(extra_fields(record))
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """
    [timestamp] [level] [logger] message key=value ...
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields = extra_fields(record)
        if fields:
            message += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return message


def get_formatter(format_type: str) -> logging.Formatter:
    """
    Форматтер по имени.

    Raises:
        ValueError: Неизвестный формат
    """
    formatters = {"json": JSONFormatter, "text": TextFormatter}
    formatter_cls = formatters.get(format_type.lower())
    if formatter_cls is None:
        raise ValueError(
            f"Unknown format type: {format_type}. Available: {', '.join(formatters)}"
        )
    return formatter_cls()
