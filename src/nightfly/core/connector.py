"""
Connector - установка новых соединений.

DNS (через подключаемый resolver) -> TCP -> [CONNECT туннель] -> [TLS].
Таймаут connect покрывает весь путь целиком.
"""

import asyncio
import logging
import socket
import ssl
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import certifi

from .exceptions import (
    ConnectError,
    ProxyError,
    TimeoutError,
    classify_os_error,
)
from .protocol import MAX_HEAD_SIZE, encode_request_head
from .proxy import ProxyTarget
from .transport import ConnectionKey, PeerDisconnected, Transport

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# DNS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class SystemResolver:
    """Резолвер через getaddrinfo event loop."""

    async def resolve(self, host: str, port: int) -> List[Address]:
        loop = asyncio.get_running_loop()
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        addresses: List[Address] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            address = (sockaddr[0], sockaddr[1])
            if address not in addresses:
                addresses.append(address)
        return addresses


class OverrideResolver:
    """
    Статические адреса для выбранных хостов, остальное - fallback.

    Example:
        >>> resolver = OverrideResolver({"a.test": [("127.0.0.1", 8080)]})
    """

    def __init__(self, overrides: Mapping[str, Sequence[Address]], fallback=None):
        self.overrides: Dict[str, List[Address]] = {
            host.lower(): [tuple(addr) for addr in addrs] for host, addrs in overrides.items()
        }
        self.fallback = fallback or SystemResolver()

    async def resolve(self, host: str, port: int) -> List[Address]:
        addresses = self.overrides.get(host.lower())
        if addresses:
            # Порт 0 - использовать порт из URL
            return [(ip, addr_port or port) for ip, addr_port in addresses]
        return await self.fallback.resolve(host, port)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TLS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """
    SSL context с CA bundle из certifi.

    verify=False отключает проверку сертификата и hostname (только для тестов).
    """
    context = ssl.create_default_context(cafile=certifi.where())
    context.set_alpn_protocols(["http/1.1"])
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CONNECTOR
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class Connector:
    """
    Открывает Transport для ConnectionKey.

    Args:
        resolver: Объект с async resolve(host, port) -> [(ip, port)]
        ssl_context: Готовый SSL context (иначе создаётся из verify)
        verify: Проверять сертификаты
    """

    def __init__(self, resolver=None, ssl_context: Optional[ssl.SSLContext] = None, verify: bool = True):
        self.resolver = resolver or SystemResolver()
        self._ssl_context = ssl_context
        self._verify = verify

    @property
    def ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = create_ssl_context(self._verify)
        return self._ssl_context

    async def connect(
        self,
        key: ConnectionKey,
        proxy: Optional[ProxyTarget] = None,
        timeout: Optional[float] = None,
        url: Optional[str] = None,
    ) -> Transport:
        """
        Новое соединение для key.

        Raises:
            ConnectError: DNS/TCP/TLS ошибка
            ProxyError: Прокси отказал в CONNECT
            TimeoutError: phase='connect'
        """
        try:
            if timeout is None:
                return await self._connect(key, proxy, url)
            return await asyncio.wait_for(self._connect(key, proxy, url), timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timed out connecting to {key}", url, timeout, "connect")

    async def _connect(self, key: ConnectionKey, proxy: Optional[ProxyTarget], url: Optional[str]) -> Transport:
        if proxy is not None:
            host, port = proxy.url.host, proxy.url.port or 80
        else:
            host, port = key.host, key.port

        transport = await self._open_tcp(host, port, key, url)
        try:
            if proxy is not None and proxy.tunnel:
                await self._tunnel(transport, key, proxy, url)
            if key.scheme == "https":
                await self._start_tls(transport, key.host, url)
        except BaseException:
            await transport.aclose()
            raise

        logger.debug("Opened %r", transport)
        return transport

    async def _open_tcp(self, host: str, port: int, key: ConnectionKey, url: Optional[str]) -> Transport:
        """Перебрать адреса резолвера до первого успешного."""
        try:
            addresses = await self.resolver.resolve(host, port)
        except (OSError, UnicodeError) as exc:
            raise classify_os_error(exc, url, phase="connect") from exc
        if not addresses:
            raise ConnectError(f"DNS resolution failed: no addresses for {host}", url)

        errors: List[OSError] = []
        for ip, addr_port in addresses:
            try:
                reader, writer = await asyncio.open_connection(ip, addr_port, limit=MAX_HEAD_SIZE)
            except OSError as exc:
                logger.debug("Connect to %s:%s failed: %s", ip, addr_port, exc)
                errors.append(exc)
                continue
            return Transport(reader, writer, key, remote_addr=(ip, addr_port))

        # Адреса кончились: отдаём ошибку последней попытки
        raise classify_os_error(errors[-1], url, phase="connect") from errors[-1]

    async def _tunnel(self, transport: Transport, key: ConnectionKey, proxy: ProxyTarget,
                      url: Optional[str]) -> None:
        """
        CONNECT host:port через прокси.

        Любой ответ кроме 2xx - ProxyError (не повторяется).
        """
        authority = f"{key.host}:{key.port}"
        if ":" in key.host:
            authority = f"[{key.host}]:{key.port}"

        headers = [("Host", authority)]
        if proxy.authorization:
            headers.append(("Proxy-Authorization", proxy.authorization))

        await transport.write_raw(encode_request_head("CONNECT", authority, headers), url)
        try:
            head = await transport.read_head(url=url)
        except PeerDisconnected as exc:
            raise ProxyError("Proxy closed connection during CONNECT", url, proxy.address) from exc

        if not 200 <= head.status_code < 300:
            raise ProxyError(
                f"Proxy refused CONNECT to {authority}: {head.status_code} {head.reason_phrase}".rstrip(),
                url,
                proxy.address,
                head.status_code,
            )
        logger.debug("Tunnel to %s established via %s", authority, proxy.address)

    async def _start_tls(self, transport: Transport, server_hostname: str, url: Optional[str]) -> None:
        try:
            await transport.start_tls(self.ssl_context, server_hostname)
        except (OSError, ssl.SSLError) as exc:
            raise classify_os_error(exc, url, phase="tls") from exc
