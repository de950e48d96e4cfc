"""
Сборка ClientConfig из окружения.
"""

from typing import Any, List, Optional

from ..config import (
    ClientConfig,
    ConnectionPoolConfig,
    DecompressionConfig,
    SecurityConfig,
    TimeoutConfig,
)
from ..logging.config import LoggingConfig
from ..proxy import Proxy
from ..redirect import RedirectPolicy
from .validator import NightflySettings


def settings_to_config(settings: NightflySettings) -> ClientConfig:
    """Перевести плоские настройки в ClientConfig."""
    proxies: List[Proxy] = []
    if settings.proxy_http:
        proxies.append(Proxy.http(settings.proxy_http))
    if settings.proxy_https:
        proxies.append(Proxy.https(settings.proxy_https))
    if settings.proxy_all:
        proxies.append(Proxy.all(settings.proxy_all))

    logging_config = None
    if settings.log_enabled:
        logging_config = LoggingConfig.create(
            level=settings.log_level,
            format=settings.log_format,
            enable_console=settings.log_enable_console,
            enable_file=settings.log_enable_file,
            file_path=settings.log_file_path,
            max_bytes=settings.log_max_bytes,
            backup_count=settings.log_backup_count,
            enable_correlation_id=settings.log_enable_correlation_id,
        )

    return ClientConfig(
        user_agent=settings.user_agent,
        proxies=tuple(proxies),
        no_proxy=settings.no_proxy,
        trust_env=settings.trust_env,
        cookie_store=settings.cookie_store,
        timeout=TimeoutConfig(
            connect=settings.timeout_connect,
            read=settings.timeout_read,
            total=settings.timeout_total,
        ),
        pool=ConnectionPoolConfig(
            max_idle_per_key=settings.pool_max_idle_per_key,
            idle_timeout=settings.pool_idle_timeout,
        ),
        redirect=RedirectPolicy(
            follow=settings.redirect_follow,
            max_redirects=settings.redirect_max,
            downgrade_method=settings.redirect_downgrade_method,
            referer=settings.redirect_referer,
            https_only=settings.redirect_https_only,
        ),
        security=SecurityConfig(
            verify_ssl=settings.security_verify_ssl,
            max_response_size=settings.security_max_response_size,
            max_decompressed_size=settings.security_max_decompressed_size,
        ),
        decompression=DecompressionConfig(
            gzip=settings.decompress_gzip,
            deflate=settings.decompress_deflate,
            brotli=settings.decompress_brotli,
        ),
        logging=logging_config,
    )


def load_from_env(env_file: Optional[str] = None, **overrides: Any) -> ClientConfig:
    """
    Загрузить ClientConfig из переменных окружения и .env.

    Priority (highest to lowest):
    1. **overrides - имена полей NightflySettings
    2. Переменные окружения NIGHTFLY_*
    3. .env файл
    4. Defaults

    Args:
        env_file: Путь к .env (по умолчанию ./.env, если есть)
        **overrides: Явные значения

    Raises:
        pydantic.ValidationError: Невалидные значения

    Example:
        >>> config = load_from_env(redirect_max=3, user_agent="my-app/1.0")
    """
    if env_file is not None:
        settings = NightflySettings(_env_file=env_file, **overrides)
    else:
        settings = NightflySettings(**overrides)
    return settings_to_config(settings)
