"""
Pydantic-settings модель переменных окружения NIGHTFLY_*.
"""

from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NightflySettings(BaseSettings):
    """
    Конфигурация клиента из окружения.

    Источники (по убыванию приоритета):
    1. Аргументы конструктора (overrides)
    2. Переменные окружения NIGHTFLY_*
    3. .env файл
    4. Значения по умолчанию

    Example .env:
        NIGHTFLY_USER_AGENT=my-app/1.0
        NIGHTFLY_TIMEOUT_CONNECT=3
        NIGHTFLY_TIMEOUT_READ=60
        NIGHTFLY_REDIRECT_MAX=5
        NIGHTFLY_PROXY_HTTPS=http://proxy.internal:3128
        NIGHTFLY_NO_PROXY=localhost,.internal
        NIGHTFLY_LOG_ENABLED=true
        NIGHTFLY_LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix='NIGHTFLY_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    # Заголовки
    user_agent: Optional[str] = None

    # Прокси
    trust_env: bool = True
    proxy_http: Optional[str] = None
    proxy_https: Optional[str] = None
    proxy_all: Optional[str] = None
    no_proxy: Optional[str] = None

    cookie_store: bool = True

    # Таймауты
    timeout_connect: Optional[float] = Field(default=5.0, gt=0)
    timeout_read: Optional[float] = Field(default=30.0, gt=0)
    timeout_total: Optional[float] = Field(default=None, gt=0)

    # Пул
    pool_max_idle_per_key: int = Field(default=10, ge=0)
    pool_idle_timeout: float = Field(default=90.0, gt=0)

    # Редиректы
    redirect_follow: bool = True
    redirect_max: int = Field(default=10, ge=0)
    redirect_downgrade_method: bool = True
    redirect_referer: bool = True
    redirect_https_only: bool = False

    # Безопасность
    security_verify_ssl: bool = True
    security_max_response_size: int = Field(default=100 * 1024 * 1024, gt=0)
    security_max_decompressed_size: int = Field(default=500 * 1024 * 1024, gt=0)

    # Распаковка
    decompress_gzip: bool = True
    decompress_deflate: bool = True
    decompress_brotli: bool = True

    # Логирование
    log_enabled: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_enable_console: bool = True
    log_enable_file: bool = False
    log_file_path: Optional[str] = None
    log_max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    log_backup_count: int = Field(default=5, ge=0)
    log_enable_correlation_id: bool = True

    @model_validator(mode='after')
    def validate_log_file(self) -> 'NightflySettings':
        """file_path обязателен при включённом файловом логе."""
        if self.log_enabled and self.log_enable_file and not self.log_file_path:
            raise ValueError("log_file_path is required when log_enable_file=True")
        return self
