"""
Transport - одно живое соединение (plain или TLS) поверх asyncio streams.

Transport принадлежит либо одному запросу в полёте, либо лежит idle в пуле.
Он уничтожается при I/O ошибке, Connection: close, framing по закрытию
соединения, таймауте посреди тела или eviction из пула.
"""

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple

from .exceptions import (
    BodyError,
    ProtocolError,
    TimeoutError,
    classify_os_error,
)
from .models import Body
from .protocol import (
    LAST_CHUNK,
    MAX_HEAD_SIZE,
    READ_CHUNK_SIZE,
    BodyFraming,
    ResponseHead,
    encode_chunk,
    encode_request_head,
    parse_chunk_size,
    parse_response_head,
)

logger = logging.getLogger(__name__)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CONNECTION KEY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class ConnectionKey:
    """
    Идентичность соединения: два запроса с одинаковым ключом могут
    делить Transport.

    Args:
        scheme: 'http' или 'https'
        host: Хост (lowercase)
        port: Порт
        proxy: URL прокси или None
    """
    scheme: str
    host: str
    port: int
    proxy: Optional[str] = None

    def __str__(self) -> str:
        via = f" via {self.proxy}" if self.proxy else ""
        return f"{self.scheme}://{self.host}:{self.port}{via}"


class PeerDisconnected(ProtocolError):
    """Соединение закрылось раньше первого байта ответа."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("Server disconnected without sending a response", url)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRANSPORT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class Transport:
    """
    HTTP/1.1 соединение.

    Args:
        reader: asyncio.StreamReader
        writer: asyncio.StreamWriter
        key: ConnectionKey, под которым соединение живёт в пуле
        remote_addr: (ip, port) пира
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        key: ConnectionKey,
        remote_addr: Optional[Tuple[str, int]] = None,
    ):
        self.key = key
        self.remote_addr = remote_addr
        self.created_at = time.monotonic()
        self.requests_sent = 0

        self._reader = reader
        self._writer = writer
        self._reusable = True
        self._closed = False

    # ─── Состояние ──────────────────────────────

    @property
    def reusable(self) -> bool:
        return self._reusable and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def mark_unreusable(self) -> None:
        """После текущего ответа соединение будет закрыто."""
        self._reusable = False

    def is_alive(self) -> bool:
        """
        Дешёвая проверка живости idle соединения.

        Idle соединение не должно иметь ни EOF, ни непрошенных байтов в буфере.
        """
        if self._closed or self._writer.is_closing():
            return False
        if self._reader.at_eof():
            return False
        # Непрошенные байты от сервера - соединение в неизвестном состоянии
        if getattr(self._reader, "_buffer", None):
            return False
        return True

    # ─── Запись ─────────────────────────────────

    async def send_request(
        self,
        method: str,
        target: str,
        headers,
        body: Body,
        url: Optional[str] = None,
    ) -> None:
        """
        Отправить head и тело.

        Тело без известной длины уходит chunked (заголовок
        Transfer-Encoding уже выставлен вызывающим кодом).
        """
        self.requests_sent += 1
        chunked = body.length is None
        try:
            self._writer.write(encode_request_head(method, target, headers))
            async for chunk in body:
                self._writer.write(encode_chunk(chunk) if chunked else chunk)
                await self._writer.drain()
            if chunked:
                self._writer.write(LAST_CHUNK)
            await self._writer.drain()
        except (OSError, ssl.SSLError) as exc:
            self.close()
            raise classify_os_error(exc, url, phase="send") from exc

    async def write_raw(self, data: bytes, url: Optional[str] = None) -> None:
        """Записать байты как есть (CONNECT)."""
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (OSError, ssl.SSLError) as exc:
            self.close()
            raise classify_os_error(exc, url, phase="send") from exc

    # ─── Чтение ─────────────────────────────────

    async def _read(self, coro, timeout: Optional[float], url: Optional[str], phase: str):
        """Одно чтение из сокета с таймаутом и классификацией ошибок."""
        try:
            if timeout is None:
                return await coro
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError:
            self.close()
            raise TimeoutError("Timed out reading from server", url, timeout, phase)
        except (OSError, ssl.SSLError) as exc:
            self.close()
            error = classify_os_error(exc, url, phase=phase)
            if phase == "body":
                raise BodyError(f"Connection failed while reading body: {error.message}", url) from exc
            raise error from exc

    async def read_head(self, timeout: Optional[float] = None, url: Optional[str] = None) -> ResponseHead:
        """
        Прочитать head ответа.

        Raises:
            PeerDisconnected: EOF до первого байта (мёртвое соединение)
            ProtocolError: Невалидный или слишком большой head
            TimeoutError: phase='read'
        """
        try:
            data = await self._read(self._reader.readuntil(b"\r\n\r\n"), timeout, url, "read")
        except asyncio.IncompleteReadError as exc:
            self.close()
            if not exc.partial:
                raise PeerDisconnected(url) from exc
            raise ProtocolError("Connection closed in the middle of response head", url) from exc
        except asyncio.LimitOverrunError as exc:
            self.close()
            raise ProtocolError(f"Response head exceeds {MAX_HEAD_SIZE} bytes", url) from exc

        try:
            return parse_response_head(data, url)
        except ProtocolError:
            self.close()
            raise

    async def iter_body(
        self,
        framing: BodyFraming,
        timeout: Optional[float] = None,
        url: Optional[str] = None,
    ) -> AsyncIterator[bytes]:
        """
        Сырые chunks тела согласно framing.

        После полного чтения соединение можно вернуть в пул (если reusable).
        """
        if framing.kind == "close":
            self.mark_unreusable()

        if framing.kind == "empty":
            return

        if framing.kind == "length":
            remaining = framing.length or 0
            while remaining > 0:
                chunk = await self._read(
                    self._reader.read(min(remaining, READ_CHUNK_SIZE)), timeout, url, "body"
                )
                if not chunk:
                    self.close()
                    raise BodyError(
                        f"Connection closed with {remaining} bytes of body outstanding", url
                    )
                remaining -= len(chunk)
                yield chunk
            return

        if framing.kind == "chunked":
            async for chunk in self._iter_chunked(timeout, url):
                yield chunk
            return

        while True:
            chunk = await self._read(self._reader.read(READ_CHUNK_SIZE), timeout, url, "body")
            if not chunk:
                self.close()
                return
            yield chunk

    async def _iter_chunked(self, timeout: Optional[float], url: Optional[str]) -> AsyncIterator[bytes]:
        try:
            while True:
                line = await self._read(self._reader.readuntil(b"\r\n"), timeout, url, "body")
                size = parse_chunk_size(line, url)
                if size == 0:
                    break
                remaining = size
                while remaining > 0:
                    chunk = await self._read(
                        self._reader.read(min(remaining, READ_CHUNK_SIZE)), timeout, url, "body"
                    )
                    if not chunk:
                        raise asyncio.IncompleteReadError(b"", remaining)
                    remaining -= len(chunk)
                    yield chunk
                crlf = await self._read(self._reader.readexactly(2), timeout, url, "body")
                if crlf != b"\r\n":
                    raise ProtocolError("Missing CRLF after chunk data", url, phase="body")

            # Trailers: до пустой строки
            while True:
                line = await self._read(self._reader.readuntil(b"\r\n"), timeout, url, "body")
                if line == b"\r\n":
                    break
        except asyncio.IncompleteReadError as exc:
            self.close()
            raise BodyError("Connection closed in the middle of chunked body", url) from exc
        except (asyncio.LimitOverrunError, ProtocolError) as exc:
            self.close()
            if isinstance(exc, ProtocolError):
                raise
            raise ProtocolError("Chunk size line too long", url, phase="body") from exc

    # ─── TLS ────────────────────────────────────

    async def start_tls(self, ssl_context: ssl.SSLContext, server_hostname: str,
                        timeout: Optional[float] = None) -> None:
        """Поднять TLS поверх текущего потока (после CONNECT)."""
        await self._writer.start_tls(
            ssl_context,
            server_hostname=server_hostname,
            ssl_handshake_timeout=timeout,
        )

    # ─── Закрытие ───────────────────────────────

    def close(self) -> None:
        """Закрыть соединение (без ожидания)."""
        if self._closed:
            return
        self._closed = True
        self._reusable = False
        self._writer.close()

    async def aclose(self) -> None:
        """Закрыть и дождаться закрытия сокета."""
        self.close()
        try:
            await self._writer.wait_closed()
        except (OSError, ssl.SSLError) as exc:
            logger.debug("Error while closing %s: %s", self.key, exc)

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("reusable" if self._reusable else "single-use")
        return f"<Transport {self.key} {state} requests={self.requests_sent}>"
