"""
Система конфигурации для nightfly.

Все конфиги immutable (frozen dataclasses): клиент и параллельные запросы
читают их без блокировок.
"""

import ssl
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, Union, TYPE_CHECKING

from .redirect import RedirectPolicy

if TYPE_CHECKING:
    from .logging import LoggingConfig
    from .proxy import Proxy

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TIMEOUT CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class TimeoutConfig:
    """
    Конфигурация таймаутов.

    Args:
        connect: Таймаут подключения, включая TLS и CONNECT туннель (сек)
        read: Таймаут одного чтения из сокета (сек)
        total: Общий лимит до получения заголовков финального ответа (опционально)

    Examples:
        >>> TimeoutConfig(connect=5, read=30)
        >>> TimeoutConfig(connect=3, read=60, total=90)
    """
    connect: Optional[float] = 5.0
    read: Optional[float] = 30.0
    total: Optional[float] = None

    def __post_init__(self):
        """Валидация."""
        if self.connect is not None and self.connect <= 0:
            raise ValueError("connect timeout must be positive")
        if self.read is not None and self.read <= 0:
            raise ValueError("read timeout must be positive")
        if self.total is not None and self.total <= 0:
            raise ValueError("total timeout must be positive")

    @classmethod
    def coerce(cls, value: Union[None, float, Tuple[float, float], 'TimeoutConfig']) -> 'TimeoutConfig':
        """
        Привести значение пользователя к TimeoutConfig.

        Число задаёт total и read одновременно, кортеж - (connect, read).
        """
        if isinstance(value, TimeoutConfig):
            return value
        if value is None:
            return cls(connect=None, read=None, total=None)
        if isinstance(value, tuple):
            return cls(connect=value[0], read=value[1])
        return cls(connect=min(5.0, float(value)), read=float(value), total=float(value))

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CONNECTION POOL CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class ConnectionPoolConfig:
    """
    Конфигурация connection pool.

    Args:
        max_idle_per_key: Максимум idle соединений на один ConnectionKey
        idle_timeout: Сколько секунд idle соединение считается живым

    Examples:
        >>> ConnectionPoolConfig(max_idle_per_key=20)
        >>> ConnectionPoolConfig(idle_timeout=30.0)
    """
    max_idle_per_key: int = 10
    idle_timeout: float = 90.0

    def __post_init__(self):
        """Валидация."""
        if self.max_idle_per_key < 0:
            raise ValueError("max_idle_per_key must be non-negative")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SECURITY CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class SecurityConfig:
    """
    Конфигурация безопасности.

    Args:
        verify_ssl: Проверять TLS сертификаты
        ssl_context: Готовый ssl.SSLContext (перекрывает verify_ssl)
        max_response_size: Максимальный размер сырого тела (байты)
        max_decompressed_size: Максимальный размер распакованного тела

    Examples:
        >>> SecurityConfig(max_response_size=50*1024*1024)  # 50MB
        >>> SecurityConfig(verify_ssl=False)  # Для тестов
    """
    verify_ssl: bool = True
    ssl_context: Optional[ssl.SSLContext] = None
    max_response_size: int = 100 * 1024 * 1024  # 100MB
    max_decompressed_size: int = 500 * 1024 * 1024  # 500MB

    def __post_init__(self):
        """Валидация."""
        if self.max_response_size <= 0:
            raise ValueError("max_response_size must be positive")
        if self.max_decompressed_size <= 0:
            raise ValueError("max_decompressed_size must be positive")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# DECOMPRESSION CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class DecompressionConfig:
    """
    Какие Content-Encoding клиент объявляет и декодирует.

    Выключенная кодировка не попадает в Accept-Encoding, а ответ с ней
    отдаётся как есть.
    """
    gzip: bool = True
    deflate: bool = True
    brotli: bool = True

    def accepted(self) -> Tuple[str, ...]:
        """Токены в порядке предпочтения."""
        tokens = []
        if self.gzip:
            tokens.append("gzip")
        if self.deflate:
            tokens.append("deflate")
        if self.brotli:
            tokens.append("br")
        return tuple(tokens)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# MAIN CONFIG
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _freeze_dict(d: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    """
    Convert dict to immutable MappingProxyType.

    Example:
        >>> frozen = _freeze_dict({"X-API-Key": "secret"})
        >>> frozen["X-New"] = "value"  # Raises TypeError
    """
    if d is None:
        return MappingProxyType({})
    return MappingProxyType(dict(d))


@dataclass(frozen=True)
class ClientConfig:
    """
    Главная конфигурация Client.

    Args:
        headers: Заголовки по умолчанию для каждого запроса
        user_agent: Значение User-Agent (None - не отправлять)
        proxies: Явные прокси правила (в порядке приоритета)
        no_proxy: Исключения для прокси ("a.com,.b.org,10.0.0.0/8")
        trust_env: Читать HTTP_PROXY/HTTPS_PROXY/NO_PROXY из окружения
        cookie_store: Включить Cookie Jar
        dns_overrides: host -> [(ip, port)] в обход резолвера
        timeout: Конфигурация таймаутов
        pool: Конфигурация connection pool
        redirect: Политика редиректов
        security: Конфигурация безопасности
        decompression: Поддерживаемые Content-Encoding
        logging: Конфигурация логирования (None = только NullHandler)

    Examples:
        >>> config = ClientConfig(user_agent="my-app/1.0")
        >>> config = ClientConfig.create(timeout=60, max_redirects=5)
    """
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    user_agent: Optional[str] = None
    proxies: Tuple['Proxy', ...] = ()
    no_proxy: Optional[str] = None
    trust_env: bool = True
    cookie_store: bool = True
    dns_overrides: Mapping[str, Tuple[Tuple[str, int], ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    pool: ConnectionPoolConfig = field(default_factory=ConnectionPoolConfig)
    redirect: RedirectPolicy = field(default_factory=RedirectPolicy)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    decompression: DecompressionConfig = field(default_factory=DecompressionConfig)
    logging: Optional['LoggingConfig'] = None

    def __post_init__(self):
        """Freeze mutable containers."""
        if isinstance(self.headers, dict):
            object.__setattr__(self, 'headers', _freeze_dict(self.headers))
        if isinstance(self.proxies, list):
            object.__setattr__(self, 'proxies', tuple(self.proxies))
        if isinstance(self.dns_overrides, dict):
            frozen = {
                host.lower(): tuple(tuple(addr) for addr in addrs)
                for host, addrs in self.dns_overrides.items()
            }
            object.__setattr__(self, 'dns_overrides', MappingProxyType(frozen))

    @classmethod
    def create(
        cls,
        timeout: Union[None, float, Tuple[float, float], TimeoutConfig] = 30,
        connect_timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        user_agent: Optional[str] = None,
        proxies: Optional[list] = None,
        verify_ssl: bool = True,
        follow_redirects: bool = True,
        max_redirects: Optional[int] = None,
        max_idle_per_key: Optional[int] = None,
        idle_timeout: Optional[float] = None,
        logging: Optional['LoggingConfig'] = None,
        **kwargs
    ) -> 'ClientConfig':
        """
        Удобный конструктор конфигурации.

        Args:
            timeout: Таймаут (число, (connect, read) или TimeoutConfig)
            connect_timeout: Таймаут подключения (переопределяет timeout)
            headers: Заголовки
            user_agent: User-Agent
            proxies: Список Proxy правил
            verify_ssl: Проверять TLS
            follow_redirects: Следовать редиректам
            max_redirects: Максимальное количество редиректов
            max_idle_per_key: Лимит idle соединений на ключ
            idle_timeout: Время жизни idle соединения
            logging: Конфигурация логирования

        Returns:
            ClientConfig instance

        Examples:
            >>> config = ClientConfig.create(timeout=60)
            >>> config = ClientConfig.create(timeout=(5, 60), max_redirects=3)
        """
        timeout_cfg = TimeoutConfig.coerce(timeout)
        if connect_timeout is not None:
            timeout_cfg = replace(timeout_cfg, connect=connect_timeout)

        redirect_cfg = RedirectPolicy(follow=follow_redirects)
        if max_redirects is not None:
            redirect_cfg = replace(redirect_cfg, max_redirects=max_redirects)

        pool_kwargs = {}
        if max_idle_per_key is not None:
            pool_kwargs['max_idle_per_key'] = max_idle_per_key
        if idle_timeout is not None:
            pool_kwargs['idle_timeout'] = idle_timeout

        return cls(
            headers=headers or {},
            user_agent=user_agent,
            proxies=tuple(proxies or ()),
            timeout=timeout_cfg,
            pool=ConnectionPoolConfig(**pool_kwargs),
            redirect=redirect_cfg,
            security=SecurityConfig(verify_ssl=verify_ssl),
            logging=logging,
            **kwargs
        )

    def with_timeout(self, timeout: Union[None, float, Tuple[float, float], TimeoutConfig]) -> 'ClientConfig':
        """
        Создать новый конфиг с изменённым timeout.

        Example:
            >>> new_config = config.with_timeout(60)
        """
        return replace(self, timeout=TimeoutConfig.coerce(timeout))

    def with_redirects(self, policy: RedirectPolicy) -> 'ClientConfig':
        """Создать новый конфиг с другой политикой редиректов."""
        return replace(self, redirect=policy)

    def with_headers(self, headers: Dict[str, str]) -> 'ClientConfig':
        """
        Создать новый конфиг с дополнительными заголовками.

        Example:
            >>> new_config = config.with_headers({"X-API-Key": "secret"})
        """
        merged = dict(self.headers)
        merged.update(headers)
        return replace(self, headers=merged)
