"""
Конфигурация из окружения и файлов.

Example:
    >>> from nightfly.core.env_config import load_from_env, ConfigFileLoader
    >>> config = load_from_env()                        # NIGHTFLY_* + .env
    >>> config = load_from_env(redirect_max=3)          # с overrides
    >>> config = ConfigFileLoader.load("nightfly.yaml")
"""

from .file_loader import ConfigFileLoader, ConfigValidationError
from .loader import load_from_env, settings_to_config
from .validator import NightflySettings

__all__ = [
    "load_from_env",
    "settings_to_config",
    "NightflySettings",
    "ConfigFileLoader",
    "ConfigValidationError",
]
