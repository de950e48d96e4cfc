"""
Загрузка ClientConfig из YAML и JSON файлов.

Формат:

    nightfly:
      user_agent: my-app/1.0
      headers: {X-Team: core}
      timeout: {connect: 3, read: 60}
      redirect: {max_redirects: 5, https_only: true}
      proxies:
        - {scheme: https, url: "http://proxy:3128", username: u, password: p}
      no_proxy: "localhost,.internal"
      dns_overrides: {api.test: [["127.0.0.1", 8080]]}
      logging: {level: DEBUG, format: json}
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config import (
    ClientConfig,
    ConnectionPoolConfig,
    DecompressionConfig,
    SecurityConfig,
    TimeoutConfig,
)
from ..exceptions import ConfigurationError
from ..logging.config import LoggingConfig
from ..proxy import Proxy
from ..redirect import RedirectPolicy


class ConfigValidationError(ConfigurationError):
    """Файл конфигурации невалиден."""
    pass


# Секция -> класс конфига
_SECTIONS = {
    "timeout": TimeoutConfig,
    "pool": ConnectionPoolConfig,
    "redirect": RedirectPolicy,
    "security": SecurityConfig,
    "decompression": DecompressionConfig,
}

_SCALARS = ("user_agent", "no_proxy", "trust_env", "cookie_store")


class ConfigFileLoader:
    """
    Загрузчик конфигурации из файлов.

    Examples:
        >>> config = ConfigFileLoader.load("nightfly.yaml")
        >>> config = ConfigFileLoader.from_json("nightfly.json")
        >>> config = ConfigFileLoader.from_env_path()  # NIGHTFLY_CONFIG_FILE
    """

    @staticmethod
    def from_yaml(path: Union[str, Path]) -> ClientConfig:
        """
        Загрузить конфиг из YAML файла.

        Raises:
            FileNotFoundError: Файл не найден
            ConfigValidationError: Невалидный YAML или конфиг
            ImportError: PyYAML не установлен
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required to load YAML configs. "
                "Install it with: pip install nightfly[yaml]"
            )

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML syntax in {path}: {e}")

        return ConfigFileLoader.from_dict(data, str(path))

    @staticmethod
    def from_json(path: Union[str, Path]) -> ClientConfig:
        """
        Загрузить конфиг из JSON файла.

        Raises:
            FileNotFoundError: Файл не найден
            ConfigValidationError: Невалидный JSON или конфиг
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Invalid JSON syntax in {path}: {e}")

        return ConfigFileLoader.from_dict(data, str(path))

    @staticmethod
    def load(path: Union[str, Path]) -> ClientConfig:
        """
        Формат по расширению (.yaml, .yml, .json).

        Raises:
            ValueError: Неподдерживаемое расширение
        """
        suffix = Path(path).suffix.lower()
        if suffix in (".yaml", ".yml"):
            return ConfigFileLoader.from_yaml(path)
        if suffix == ".json":
            return ConfigFileLoader.from_json(path)
        raise ValueError(
            f"Unsupported config file format: {suffix}. Supported formats: .yaml, .yml, .json"
        )

    @staticmethod
    def from_env_path() -> Optional[ClientConfig]:
        """Загрузить файл из NIGHTFLY_CONFIG_FILE (None, если не задан)."""
        config_path = os.environ.get("NIGHTFLY_CONFIG_FILE")
        if not config_path:
            return None
        return ConfigFileLoader.load(config_path)

    @staticmethod
    def from_dict(data: Any, source: str = "<dict>") -> ClientConfig:
        """
        ClientConfig из распарсенных данных.

        Raises:
            ConfigValidationError: Неверная структура или значения
        """
        if not data:
            raise ConfigValidationError(f"Empty config file: {source}")
        if isinstance(data, dict) and "nightfly" in data:
            data = data["nightfly"]
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Config must be a dictionary, got {type(data).__name__} in {source}"
            )

        kwargs: Dict[str, Any] = {key: data[key] for key in _SCALARS if key in data}

        try:
            for section, config_cls in _SECTIONS.items():
                if section in data:
                    kwargs[section] = config_cls(**_section(data, section, source))

            if "headers" in data:
                kwargs["headers"] = dict(_section(data, "headers", source))

            if "proxies" in data:
                kwargs["proxies"] = tuple(_build_proxy(item, source) for item in data["proxies"])

            if "dns_overrides" in data:
                kwargs["dns_overrides"] = {
                    host: [(str(ip), int(port)) for ip, port in addresses]
                    for host, addresses in _section(data, "dns_overrides", source).items()
                }

            if "logging" in data:
                kwargs["logging"] = LoggingConfig.create(**_section(data, "logging", source))

            return ClientConfig(**kwargs)
        except ConfigValidationError:
            raise
        except (TypeError, ValueError, ConfigurationError) as e:
            raise ConfigValidationError(f"Invalid configuration in {source}: {e}") from e


def _section(data: Dict[str, Any], name: str, source: str) -> Dict[str, Any]:
    value = data[name]
    if not isinstance(value, dict):
        raise ConfigValidationError(f"{name} must be a dictionary in {source}")
    return value


def _build_proxy(item: Any, source: str) -> Proxy:
    if not isinstance(item, dict) or "url" not in item:
        raise ConfigValidationError(f"proxy entry must have 'url' in {source}")
    proxy = Proxy(item.get("scheme", "all"), item["url"])
    if item.get("username") is not None:
        proxy = proxy.basic_auth(item["username"], item.get("password", ""))
    return proxy
