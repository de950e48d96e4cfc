"""
Client - асинхронный HTTP/1.1 клиент.

Один вызов execute() - одна цепочка редиректов. На каждом шаге:

1. Proxy Resolver выбирает прокси для URL
2. Connection Pool отдаёт idle Transport или Connector открывает новый
3. Собираются wire заголовки (Host, Accept, Accept-Encoding, cookies, ...)
4. Отправка head и тела
5. Чтение head ответа (1xx пропускаются), Set-Cookie -> Cookie Jar
6. Redirect Engine решает: следующий шаг или вернуть ответ
"""

import asyncio
import functools
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Tuple, Union

import httpx

from .config import ClientConfig, TimeoutConfig
from .connector import Connector, OverrideResolver
from .cookies import CookieJar
from .decoders import DecodedStream, build_decoder
from .exceptions import (
    BodyError,
    ConnectError,
    NightflyError,
    ProtocolError,
    ProxyError,
    TimeoutError,
    TransportError,
)
from .logging import NightflyLogger
from .models import HeaderTypes, Request, Response
from .pool import ConnectionPool
from .protocol import ResponseHead, body_framing, host_header, keep_alive, request_target
from .proxy import ProxyResolver, ProxyTarget
from .redirect import RedirectEngine
from .transport import ConnectionKey, PeerDisconnected, Transport
from ..utils.sanitizer import mask_url

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}

# Сколько байт тела редирект-ответа дочитывать ради переиспользования соединения
MAX_REDIRECT_DRAIN = 64 * 1024

TimeoutTypes = Union[None, float, Tuple[float, float], TimeoutConfig]


class _UseClientDefault:
    """Маркер: таймаут не передан, взять из конфига клиента."""

    def __repr__(self) -> str:
        return "USE_CLIENT_DEFAULT"


USE_CLIENT_DEFAULT = _UseClientDefault()


class Client:
    """
    Асинхронный HTTP клиент.

    Args:
        config: Конфигурация клиента
        cookie_jar: Свой CookieJar (иначе создаётся при config.cookie_store)
        resolver: DNS резолвер с async resolve(host, port)
        **kwargs: Аргументы ClientConfig.create(), если config не передан

    Examples:
        >>> async with Client() as client:
        ...     response = await client.get("https://api.example.com/users")
        ...     users = response.json()

        >>> async with Client(user_agent="my-app/1.0", max_redirects=3) as client:
        ...     async with client.stream("GET", "https://example.com/big") as response:
        ...         async for chunk in response.aiter_bytes():
        ...             process(chunk)
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        cookie_jar: Optional[CookieJar] = None,
        resolver=None,
        **kwargs: Any,
    ):
        if config is not None and kwargs:
            raise ValueError("Pass either config or ClientConfig.create() keyword arguments, not both")
        if config is None:
            config = ClientConfig.create(**kwargs) if kwargs else ClientConfig()
        self.config = config

        if cookie_jar is not None:
            self.cookies: Optional[CookieJar] = cookie_jar
        else:
            self.cookies = CookieJar() if config.cookie_store else None

        if config.dns_overrides:
            resolver = OverrideResolver(config.dns_overrides, fallback=resolver)
        self._connector = Connector(
            resolver=resolver,
            ssl_context=config.security.ssl_context,
            verify=config.security.verify_ssl,
        )
        self._pool = ConnectionPool(config.pool)
        self._proxies = ProxyResolver.build(config.proxies, config.no_proxy, config.trust_env)
        self._logger: Optional[NightflyLogger] = (
            NightflyLogger(config.logging) if config.logging else None
        )
        self._closed = False

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PUBLIC API
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def execute(
        self,
        request: Request,
        *,
        timeout: Union[TimeoutTypes, _UseClientDefault] = USE_CLIENT_DEFAULT,
    ) -> Response:
        """
        Выполнить запрос, пройти редиректы, вернуть ответ с непрочитанным телом.

        Тело нужно дочитать (aread/aiter_bytes) или закрыть (aclose),
        иначе соединение не вернётся в пул.

        Args:
            request: Запрос
            timeout: Таймаут для этого запроса (перекрывает конфиг клиента)

        Raises:
            ConnectError, ProxyError, ProtocolError, RedirectError, TimeoutError
        """
        if self._closed:
            raise RuntimeError("Cannot send a request, as the client has been closed")

        timeouts = (
            self.config.timeout if isinstance(timeout, _UseClientDefault)
            else TimeoutConfig.coerce(timeout)
        )
        started = time.monotonic()

        if self._logger:
            self._logger.debug(
                "HTTP request started", method=request.method, url=mask_url(request.url)
            )

        try:
            if timeouts.total is None:
                response = await self._send_handling_redirects(request, timeouts)
            else:
                try:
                    response = await asyncio.wait_for(
                        self._send_handling_redirects(request, timeouts), timeouts.total
                    )
                except asyncio.TimeoutError:
                    raise TimeoutError(
                        "Request did not complete in time", str(request.url), timeouts.total, "total"
                    )
        except NightflyError as exc:
            if self._logger:
                self._logger.error(
                    "HTTP request failed",
                    method=request.method,
                    url=mask_url(request.url),
                    error=exc.__class__.__name__,
                    phase=exc.phase,
                    detail=mask_url(exc.message),
                )
            raise

        response.elapsed = time.monotonic() - started
        if self._logger:
            self._logger.info(
                "HTTP request finished",
                method=request.method,
                url=mask_url(response.url),
                status_code=response.status_code,
                redirects=len(response.history),
                duration_ms=round(response.elapsed * 1000, 2),
            )
        return response

    async def request(
        self,
        method: str,
        url: Union[str, httpx.URL],
        *,
        headers: HeaderTypes = None,
        content: Union[bytes, str, None] = None,
        json: Any = None,
        stream: Optional[AsyncIterable[bytes]] = None,
        timeout: Union[TimeoutTypes, _UseClientDefault] = USE_CLIENT_DEFAULT,
    ) -> Response:
        """
        Выполнить запрос и прочитать тело целиком.

        Example:
            >>> response = await client.request("POST", "https://api.example.com/items", json={"a": 1})
            >>> response.json()
        """
        request = Request(method, url, headers=headers, content=content, json=json, stream=stream)
        response = await self.execute(request, timeout=timeout)
        try:
            await response.aread()
        finally:
            await response.aclose()
        return response

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: Union[str, httpx.URL],
        **kwargs: Any,
    ) -> AsyncIterator[Response]:
        """
        Ответ с потоковым телом; aclose() гарантирован при выходе.

        Example:
            >>> async with client.stream("GET", url) as response:
            ...     async for chunk in response.aiter_bytes():
            ...         ...
        """
        timeout = kwargs.pop("timeout", USE_CLIENT_DEFAULT)
        request = Request(method, url, **kwargs)
        response = await self.execute(request, timeout=timeout)
        try:
            yield response
        finally:
            await response.aclose()

    async def get(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("HEAD", url, **kwargs)

    async def options(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("OPTIONS", url, **kwargs)

    async def post(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: Union[str, httpx.URL], **kwargs: Any) -> Response:
        return await self.request("DELETE", url, **kwargs)

    def pool_stats(self) -> Dict[str, Any]:
        """Статистика connection pool."""
        return self._pool.stats()

    async def aclose(self) -> None:
        """Закрыть все соединения пула."""
        if self._closed:
            return
        self._closed = True
        await self._pool.close()
        if self._logger:
            self._logger.close()

    async def __aenter__(self) -> 'Client':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # REDIRECT LOOP
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def _send_handling_redirects(self, request: Request, timeouts: TimeoutConfig) -> Response:
        engine = RedirectEngine(self.config.redirect, request)
        history: List[Response] = []
        current = request

        while True:
            response = await self._send_single(current, timeouts)

            try:
                next_request = engine.next_request(current, response)
            except BaseException:
                await response.aclose()
                raise

            if next_request is None:
                response.history = history
                return response

            if self._logger:
                self._logger.info(
                    "Following redirect",
                    status_code=response.status_code,
                    url=mask_url(current.url),
                    location=mask_url(next_request.url),
                    hop=engine.hops,
                )

            await self._drain(response)
            history.append(response)
            current = next_request

    async def _drain(self, response: Response) -> None:
        """Дочитать небольшое тело редиректа, чтобы вернуть соединение в пул."""
        try:
            total = 0
            async for chunk in response.aiter_raw():
                total += len(chunk)
                if total > MAX_REDIRECT_DRAIN:
                    break
        except (BodyError, ProtocolError, TransportError) as exc:
            # Соединение уже закрыто; тело редиректа никому не нужно
            logger.debug("Discarding redirect body of %s: %s", response.url, exc)
        finally:
            await response.aclose()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # SINGLE HOP
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def _send_single(self, request: Request, timeouts: TimeoutConfig) -> Response:
        url = request.url
        url_str = str(url)
        proxy = self._proxies.resolve(url)
        key = ConnectionKey(
            scheme=url.scheme,
            host=url.host.lower(),
            port=url.port or DEFAULT_PORTS[url.scheme],
            proxy=proxy.address if proxy is not None else None,
        )
        target = request_target(url, absolute=proxy is not None and not proxy.tunnel)
        headers = self._wire_headers(request, proxy)

        transport = await self._pool.acquire(key)
        reused = transport is not None
        if transport is None:
            transport = await self._open(key, proxy, timeouts, url_str)

        try:
            head = await self._exchange(transport, request, target, headers, timeouts, url_str)
        except (PeerDisconnected, ConnectError) as exc:
            await self._pool.discard(transport)
            if not reused or isinstance(exc, ProxyError) or not request.body.replayable:
                raise
            logger.warning("Pooled connection to %s was dead (%s), retrying once", key, exc.message)
            if self._logger:
                self._logger.warning(
                    "Retrying on a fresh connection", url=mask_url(url), reason=exc.message
                )
            transport = await self._open(key, proxy, timeouts, url_str)
            try:
                head = await self._exchange(transport, request, target, headers, timeouts, url_str)
            except BaseException:
                await self._pool.discard(transport)
                raise
        except BaseException:
            await self._pool.discard(transport)
            raise

        try:
            return await self._build_response(request, head, transport, key, timeouts, url_str)
        except BaseException:
            await self._pool.discard(transport)
            raise

    async def _open(self, key: ConnectionKey, proxy: Optional[ProxyTarget],
                    timeouts: TimeoutConfig, url: str) -> Transport:
        transport = await self._connector.connect(key, proxy, timeout=timeouts.connect, url=url)
        self._pool.register(transport)
        return transport

    async def _exchange(self, transport: Transport, request: Request, target: str,
                        headers: List[Tuple[str, str]], timeouts: TimeoutConfig,
                        url: str) -> ResponseHead:
        """Отправить запрос и прочитать финальный head (1xx кроме 101 пропускаются)."""
        await transport.send_request(request.method, target, headers, request.body, url)
        while True:
            head = await transport.read_head(timeouts.read, url)
            if head.is_informational and head.status_code != 101:
                logger.debug("Skipping interim %s response from %s", head.status_code, url)
                continue
            return head

    async def _build_response(self, request: Request, head: ResponseHead, transport: Transport,
                              key: ConnectionKey, timeouts: TimeoutConfig, url: str) -> Response:
        framing = body_framing(request.method, head, url)
        if not keep_alive(head) or head.status_code == 101:
            transport.mark_unreusable()

        if self.cookies is not None:
            set_cookies = head.headers.get_list("set-cookie")
            if set_cookies:
                self.cookies.ingest(request.url, set_cookies)

        decoder = build_decoder(head.headers, self.config.decompression.accepted())
        decoded_stream = functools.partial(
            DecodedStream,
            decoder=decoder,
            url=url,
            max_response_size=self.config.security.max_response_size,
            max_decompressed_size=self.config.security.max_decompressed_size,
        )

        response_kwargs: Dict[str, Any] = dict(
            headers=head.headers,
            request=request,
            reason_phrase=head.reason_phrase,
            http_version=head.http_version,
            decoded_stream=decoded_stream,
            remote_addr=transport.remote_addr,
        )

        if framing.kind == "empty":
            await self._return_transport(key, transport, completed=True)
            return Response(head.status_code, content=b"", **response_kwargs)

        async def on_close(completed: bool) -> None:
            await self._return_transport(key, transport, completed)

        return Response(
            head.status_code,
            stream=transport.iter_body(framing, timeouts.read, url),
            on_close=on_close,
            **response_kwargs,
        )

    async def _return_transport(self, key: ConnectionKey, transport: Transport, completed: bool) -> None:
        if completed and transport.reusable:
            await self._pool.release(key, transport)
        else:
            await self._pool.discard(transport)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # HEADERS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def _wire_headers(self, request: Request, proxy: Optional[ProxyTarget]) -> List[Tuple[str, str]]:
        """Заголовки, которые реально уйдут в сокет."""
        headers = httpx.Headers(request.headers)
        for name, value in self.config.headers.items():
            if name not in headers:
                headers[name] = value

        headers.pop("host", None)

        if "accept" not in headers:
            headers["Accept"] = "*/*"

        accepted = self.config.decompression.accepted()
        if "accept-encoding" not in headers and accepted:
            headers["Accept-Encoding"] = ", ".join(accepted)

        if self.config.user_agent and "user-agent" not in headers:
            headers["User-Agent"] = self.config.user_agent

        if (proxy is not None and not proxy.tunnel and proxy.authorization
                and "proxy-authorization" not in headers):
            headers["Proxy-Authorization"] = proxy.authorization

        length = request.body.length
        if length is None:
            headers.pop("content-length", None)
            headers["Transfer-Encoding"] = "chunked"
        else:
            headers.pop("transfer-encoding", None)
            if length > 0 or request.method in ("POST", "PUT", "PATCH"):
                headers["Content-Length"] = str(length)
            else:
                headers.pop("content-length", None)

        cookie = self._cookie_header(request.url, headers.get("cookie"))
        if cookie is not None:
            headers["Cookie"] = cookie

        # raw сохраняет регистр имён
        wire = [(name.decode("latin-1"), value.decode("latin-1")) for name, value in headers.raw]
        return [("Host", host_header(request.url))] + wire

    def _cookie_header(self, url: httpx.URL, caller_cookie: Optional[str]) -> Optional[str]:
        """
        Cookie jar + Cookie вызывающего кода.

        Имена из заголовка вызывающего выигрывают, jar их не дублирует.
        """
        if self.cookies is None:
            return caller_cookie

        jar_cookies = self.cookies.matching(url)
        if not jar_cookies:
            return caller_cookie
        if not caller_cookie:
            return "; ".join(f"{c.name}={c.value}" for c in jar_cookies)

        caller_names = {
            pair.split("=", 1)[0].strip() for pair in caller_cookie.split(";") if pair.strip()
        }
        extra = [f"{c.name}={c.value}" for c in jar_cookies if c.name not in caller_names]
        if not extra:
            return caller_cookie
        return "; ".join([caller_cookie] + extra)

    def __repr__(self) -> str:
        return f"<Client pool={self._pool.stats()}>"
