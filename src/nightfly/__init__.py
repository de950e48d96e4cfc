"""nightfly - асинхронный HTTP/1.1 клиент с пулом соединений, прокси, cookies и редиректами."""

import logging
from importlib.metadata import version, PackageNotFoundError

from .core.client import Client, USE_CLIENT_DEFAULT
from .core.config import (
    ClientConfig,
    ConnectionPoolConfig,
    DecompressionConfig,
    SecurityConfig,
    TimeoutConfig,
)
from .core.cookies import Cookie, CookieJar
from .core.decoders import SUPPORTED_DECODERS, build_decoder
from .core.exceptions import (
    BodyError,
    BodyNotReplayableError,
    ClientStatusError,
    ConfigurationError,
    ConnectError,
    DecodingError,
    DecompressionBombError,
    HTTPStatusError,
    InsecureRedirectError,
    NightflyError,
    ProtocolError,
    ProxyError,
    RedirectError,
    RedirectLoopError,
    ResponseClosed,
    ResponseNotRead,
    ResponseTooLargeError,
    ServerStatusError,
    StreamConsumed,
    StreamError,
    TimeoutError,
    TooManyRedirects,
    TransportError,
)
from .core.models import Body, BufferedBody, Request, Response, StreamingBody
from .core.pool import ConnectionPool
from .core.proxy import NoProxy, Proxy, ProxyResolver, ProxyTarget
from .core.redirect import RedirectEngine, RedirectPolicy, RedirectState
from .core.transport import ConnectionKey, Transport

# NullHandler: библиотека молчит, пока приложение не настроит logging
logging.getLogger('nightfly').addHandler(logging.NullHandler())

try:
    __version__ = version("nightfly")
except PackageNotFoundError:
    # Пакет не установлен (development mode)
    __version__ = "0.0.0-dev"

__all__ = [
    # Client
    "Client",
    "USE_CLIENT_DEFAULT",
    # Config
    "ClientConfig",
    "TimeoutConfig",
    "ConnectionPoolConfig",
    "SecurityConfig",
    "DecompressionConfig",
    "RedirectPolicy",
    # Models
    "Request",
    "Response",
    "Body",
    "BufferedBody",
    "StreamingBody",
    # Components
    "ConnectionKey",
    "ConnectionPool",
    "Transport",
    "Cookie",
    "CookieJar",
    "Proxy",
    "NoProxy",
    "ProxyResolver",
    "ProxyTarget",
    "RedirectEngine",
    "RedirectState",
    "SUPPORTED_DECODERS",
    "build_decoder",
    # Exceptions
    "NightflyError",
    "TransportError",
    "ConnectError",
    "ProxyError",
    "ProtocolError",
    "TimeoutError",
    "RedirectError",
    "TooManyRedirects",
    "RedirectLoopError",
    "BodyNotReplayableError",
    "InsecureRedirectError",
    "BodyError",
    "DecodingError",
    "ResponseTooLargeError",
    "DecompressionBombError",
    "HTTPStatusError",
    "ClientStatusError",
    "ServerStatusError",
    "StreamError",
    "StreamConsumed",
    "ResponseNotRead",
    "ResponseClosed",
    "ConfigurationError",
    "__version__",
]
