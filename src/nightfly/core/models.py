"""
Request, Body и Response.

Request неизменяем после передачи в Client: редиректы строят новые
Request через copy_with(). Body - явный вариант:

- BufferedBody: байты в памяти, можно отправлять сколько угодно раз
- StreamingBody: одноразовый async источник, повтор запрещён

Response отдаёт тело по запросу (pull): aiter_raw() / aiter_bytes() / aread().
"""

import codecs
import json as jsonlib
import time
from typing import (
    Any, AsyncIterable, AsyncIterator, Callable, List, Mapping, Optional,
    Tuple, Union, TYPE_CHECKING,
)

import httpx

from .cookies import Cookie, parse_set_cookie
from .exceptions import (
    BodyNotReplayableError,
    ClientStatusError,
    ResponseClosed,
    ResponseNotRead,
    ServerStatusError,
    StreamConsumed,
)

if TYPE_CHECKING:
    from .decoders import DecodedStream

HeaderTypes = Union[httpx.Headers, Mapping[str, str], List[Tuple[str, str]], None]

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BODY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class Body:
    """Тело запроса."""

    replayable: bool = True

    @property
    def length(self) -> Optional[int]:
        """Длина в байтах, None - неизвестна (chunked)."""
        raise NotImplementedError

    def __aiter__(self) -> AsyncIterator[bytes]:
        raise NotImplementedError


class BufferedBody(Body):
    """Тело целиком в памяти."""

    replayable = True

    def __init__(self, data: bytes = b""):
        self.data = bytes(data)

    @property
    def length(self) -> Optional[int]:
        return len(self.data)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self.data:
            yield self.data

    def __repr__(self) -> str:
        return f"<BufferedBody [{len(self.data)} bytes]>"


class StreamingBody(Body):
    """
    Одноразовое потоковое тело.

    Args:
        source: Async iterable байтов
        length: Известная длина (иначе отправляется chunked)
    """

    replayable = False

    def __init__(self, source: AsyncIterable[bytes], length: Optional[int] = None):
        self._source = source
        self._length = length
        self._consumed = False

    @property
    def length(self) -> Optional[int]:
        return self._length

    @property
    def consumed(self) -> bool:
        return self._consumed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise BodyNotReplayableError("Streaming body has already been sent")
        self._consumed = True
        async for chunk in self._source:
            if chunk:
                yield bytes(chunk)

    def __repr__(self) -> str:
        return f"<StreamingBody length={self._length}>"


EMPTY_BODY = BufferedBody(b"")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REQUEST
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class Request:
    """
    HTTP запрос.

    Args:
        method: HTTP метод
        url: Абсолютный URL (str или httpx.URL)
        headers: Заголовки
        content: Тело (bytes или str, str кодируется в utf-8)
        json: Объект для JSON сериализации
        stream: Async iterable байтов (одноразовое тело)
        length: Длина stream тела, если известна
        body: Готовый Body (взаимоисключающе с content/json/stream)

    Examples:
        >>> Request("GET", "http://a.test/start")
        >>> Request("POST", "http://a.test/api", json={"id": 42})
    """

    def __init__(
        self,
        method: str,
        url: Union[str, httpx.URL],
        *,
        headers: HeaderTypes = None,
        content: Union[bytes, str, None] = None,
        json: Any = None,
        stream: Optional[AsyncIterable[bytes]] = None,
        length: Optional[int] = None,
        body: Optional[Body] = None,
    ):
        self.method = method.upper()
        self.url = url if isinstance(url, httpx.URL) else httpx.URL(url)
        if not self.url.is_absolute_url:
            raise ValueError(f"Request URL must be absolute: {self.url}")
        if self.url.scheme not in ("http", "https"):
            raise ValueError(f"Unsupported URL scheme: {self.url.scheme!r}")

        self.headers = httpx.Headers(headers)

        given = [x for x in (content, json, stream, body) if x is not None]
        if len(given) > 1:
            raise ValueError("Only one of content, json, stream or body may be set")

        if body is not None:
            self.body = body
        elif stream is not None:
            self.body = StreamingBody(stream, length)
        elif json is not None:
            self.body = BufferedBody(jsonlib.dumps(json).encode("utf-8"))
            self.headers.setdefault("Content-Type", "application/json")
        elif content is not None:
            if isinstance(content, str):
                content = content.encode("utf-8")
            self.body = BufferedBody(content)
        else:
            self.body = EMPTY_BODY

    def copy_with(
        self,
        *,
        method: Optional[str] = None,
        url: Optional[httpx.URL] = None,
        headers: HeaderTypes = None,
        body: Union[Body, None, bool] = False,
    ) -> 'Request':
        """
        Новый Request на основе текущего.

        body=False (по умолчанию) сохраняет тело, body=None - пустое тело.
        """
        if body is False:
            body = self.body
        elif body is None:
            body = EMPTY_BODY
        return Request(
            method or self.method,
            url if url is not None else self.url,
            headers=headers if headers is not None else self.headers,
            body=body,
        )

    def __repr__(self) -> str:
        return f"<Request [{self.method} {self.url}]>"

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RESPONSE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class Response:
    """
    HTTP ответ.

    Тело не читается заранее: Client возвращает Response сразу после
    заголовков. Transport освобождается, когда тело дочитано или
    вызван aclose().

    Example:
        >>> async with await client.get("http://a.test/") as response:
        ...     async for chunk in response.aiter_bytes():
        ...         process(chunk)
    """

    def __init__(
        self,
        status_code: int,
        *,
        headers: HeaderTypes = None,
        request: Optional[Request] = None,
        reason_phrase: str = "",
        http_version: str = "HTTP/1.1",
        content: Optional[bytes] = None,
        stream: Optional[AsyncIterable[bytes]] = None,
        decoded_stream: Optional[Callable[[AsyncIterator[bytes]], 'DecodedStream']] = None,
        on_close: Optional[Callable[[bool], Any]] = None,
        remote_addr: Optional[Tuple[str, int]] = None,
    ):
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self.http_version = http_version
        self.headers = httpx.Headers(headers)
        self.request = request
        self.history: List['Response'] = []
        self.elapsed: Optional[float] = None
        self.remote_addr = remote_addr

        self._stream = stream
        self._decoded_stream = decoded_stream
        self._on_close = on_close
        self._content: Optional[bytes] = content
        self._started = False
        self._closed = False
        self._started_at = time.monotonic()

    # ─── Метаданные ─────────────────────────────

    @property
    def url(self) -> Optional[httpx.URL]:
        """Итоговый URL (после редиректов)."""
        return self.request.url if self.request is not None else None

    @property
    def is_redirect(self) -> bool:
        return self.status_code in (301, 302, 303, 307, 308) and "location" in self.headers

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def content_length(self) -> Optional[int]:
        """Content-Length, если он есть и тело не сжато."""
        encoding = self.headers.get("content-encoding", "identity").strip().lower()
        if encoding not in ("", "identity"):
            return None
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value.strip())
        except ValueError:
            return None

    @property
    def charset_encoding(self) -> Optional[str]:
        """charset из Content-Type."""
        content_type = self.headers.get("content-type")
        if not content_type:
            return None
        for param in content_type.split(";")[1:]:
            key, _, value = param.partition("=")
            if key.strip().lower() == "charset":
                return value.strip().strip('"\'') or None
        return None

    @property
    def cookies(self) -> List[Cookie]:
        """
        Cookies из Set-Cookie этого ответа.

        Только разбор: jar клиента не трогается, отклонённые
        (чужой Domain, мусор) пропускаются.
        """
        if self.url is None:
            return []
        cookies = []
        for header in self.headers.get_list("set-cookie"):
            cookie = parse_set_cookie(header, self.url)
            if cookie is not None:
                cookies.append(cookie)
        return cookies

    def raise_for_status(self) -> 'Response':
        """
        Поднять исключение для 4xx/5xx.

        Returns:
            self, для цепочки (await client.get(url)).raise_for_status().json()

        Raises:
            ClientStatusError: 4xx
            ServerStatusError: 5xx
        """
        if 400 <= self.status_code < 500:
            raise ClientStatusError(self.status_code, self._url_str(), self.reason_phrase)
        if 500 <= self.status_code < 600:
            raise ServerStatusError(self.status_code, self._url_str(), self.reason_phrase)
        return self

    # ─── Тело ───────────────────────────────────

    async def aiter_raw(self) -> AsyncIterator[bytes]:
        """Тело без content-decoding (только framing)."""
        if self._started:
            raise StreamConsumed(self._url_str())
        if self._closed:
            raise ResponseClosed(self._url_str())
        self._started = True

        completed = False
        try:
            if self._stream is not None:
                async for chunk in self._stream:
                    yield chunk
            elif self._content:
                yield self._content
            completed = True
        finally:
            await self._finish(completed)

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Тело с распаковкой Content-Encoding."""
        if self._content is not None:
            if self._content:
                yield self._content
            return
        raw = self.aiter_raw()
        if self._decoded_stream is None:
            async for chunk in raw:
                yield chunk
            return
        async for chunk in self._decoded_stream(raw):
            yield chunk

    async def aiter_text(self) -> AsyncIterator[str]:
        """Текст по кускам, декодер с учётом многобайтовых символов."""
        decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        async for chunk in self.aiter_bytes():
            text = decoder.decode(chunk)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    async def aread(self) -> bytes:
        """Прочитать тело целиком (кэшируется в content)."""
        if self._content is None:
            self._content = b"".join([chunk async for chunk in self.aiter_bytes()])
        return self._content

    @property
    def content(self) -> bytes:
        if self._content is None:
            raise ResponseNotRead(self._url_str())
        return self._content

    @property
    def encoding(self) -> str:
        charset = self.charset_encoding
        if charset:
            try:
                codecs.lookup(charset)
                return charset
            except LookupError:
                pass
        return "utf-8"

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding, errors="replace")

    def json(self, **kwargs: Any) -> Any:
        return jsonlib.loads(self.text, **kwargs)

    async def aclose(self) -> None:
        """Закрыть ответ; недочитанное тело означает закрытие соединения."""
        if not self._closed:
            await self._finish(completed=False)

    async def _finish(self, completed: bool) -> None:
        if self._closed:
            return
        self._closed = True
        if self.elapsed is None:
            self.elapsed = time.monotonic() - self._started_at
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            await on_close(completed)

    def _url_str(self) -> Optional[str]:
        return str(self.url) if self.url is not None else None

    # ─── Context manager ────────────────────────

    async def __aenter__(self) -> 'Response':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<Response [{self.status_code} {self.reason_phrase}]>"