"""
Decoder Pipeline - потоковая распаковка Content-Encoding.

Декодер выбирается один раз на ответ по заголовку Content-Encoding.
Новая кодировка - новый класс в SUPPORTED_DECODERS, call sites не меняются.

Распаковка ленивая: ошибка в данных поднимается в момент, когда
вызывающий код тянет сломанный chunk, а не при разборе заголовков.
"""

import logging
import zlib
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence, Type

import brotli
import httpx

from .exceptions import DecodingError, DecompressionBombError, ResponseTooLargeError

logger = logging.getLogger(__name__)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# DECODERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class ContentDecoder:
    """Базовый декодер: decode() на каждый chunk, flush() в конце."""

    def decode(self, data: bytes) -> bytes:
        raise NotImplementedError

    def flush(self) -> bytes:
        raise NotImplementedError


class IdentityDecoder(ContentDecoder):
    """Без сжатия."""

    def decode(self, data: bytes) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""


class GzipDecoder(ContentDecoder):
    """
    gzip, включая несколько склеенных members.

    Пустое тело - пустой результат; обрезанный поток - ошибка в flush().
    """

    def __init__(self):
        self._decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)
        self._seen_data = False

    def decode(self, data: bytes) -> bytes:
        if data:
            self._seen_data = True
        output = []
        try:
            while data:
                output.append(self._decompressor.decompress(data))
                if not self._decompressor.eof:
                    break
                # Следующий member
                data = self._decompressor.unused_data
                if data:
                    self._decompressor = zlib.decompressobj(zlib.MAX_WBITS | 16)
        except zlib.error as exc:
            raise DecodingError(f"Invalid gzip data: {exc}") from exc
        return b"".join(output)

    def flush(self) -> bytes:
        if not self._seen_data:
            return b""
        try:
            tail = self._decompressor.flush()
        except zlib.error as exc:
            raise DecodingError(f"Invalid gzip data: {exc}") from exc
        if not self._decompressor.eof:
            raise DecodingError("Truncated gzip stream")
        return tail


class DeflateDecoder(ContentDecoder):
    """
    deflate: zlib-обёрнутый поток, fallback на raw deflate.

    Часть серверов отдаёт raw deflate без zlib заголовка.
    """

    def __init__(self):
        self._first_attempt = True
        self._decompressor = zlib.decompressobj()
        self._seen_data = False

    def decode(self, data: bytes) -> bytes:
        if data:
            self._seen_data = True
        was_first_attempt = self._first_attempt
        self._first_attempt = False
        try:
            return self._decompressor.decompress(data)
        except zlib.error as exc:
            if was_first_attempt:
                self._decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
                return self.decode(data)
            raise DecodingError(f"Invalid deflate data: {exc}") from exc

    def flush(self) -> bytes:
        if not self._seen_data:
            return b""
        try:
            tail = self._decompressor.flush()
        except zlib.error as exc:
            raise DecodingError(f"Invalid deflate data: {exc}") from exc
        if not self._decompressor.eof:
            raise DecodingError("Truncated deflate stream")
        return tail


class BrotliDecoder(ContentDecoder):
    """Brotli (пакет brotli)."""

    def __init__(self):
        self._decompressor = brotli.Decompressor()
        self._seen_data = False

    def decode(self, data: bytes) -> bytes:
        if not data:
            return b""
        self._seen_data = True
        try:
            return self._decompressor.process(data)
        except brotli.error as exc:
            raise DecodingError(f"Invalid brotli data: {exc}") from exc

    def flush(self) -> bytes:
        if self._seen_data and not self._decompressor.is_finished():
            raise DecodingError("Truncated brotli stream")
        return b""


class MultiDecoder(ContentDecoder):
    """
    Цепочка кодировок.

    Args:
        children: Декодеры в порядке объявления в Content-Encoding
            (применяются в обратном порядке)
    """

    def __init__(self, children: Sequence[ContentDecoder]):
        self.children = list(reversed(children))

    def decode(self, data: bytes) -> bytes:
        for child in self.children:
            data = child.decode(data)
        return data

    def flush(self) -> bytes:
        data = b""
        for child in self.children:
            data = child.decode(data) + child.flush()
        return data


SUPPORTED_DECODERS: Dict[str, Type[ContentDecoder]] = {
    "identity": IdentityDecoder,
    "gzip": GzipDecoder,
    "x-gzip": GzipDecoder,
    "deflate": DeflateDecoder,
    "br": BrotliDecoder,
}

# x-gzip принимается, когда включён gzip
_TOKEN_ALIASES = {"x-gzip": "gzip"}

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SELECTION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def build_decoder(headers: httpx.Headers, accepted: Iterable[str]) -> ContentDecoder:
    """
    Выбрать декодер по Content-Encoding.

    Неизвестная или выключенная кодировка - тело отдаётся без распаковки.

    Example:
        >>> build_decoder(httpx.Headers({"Content-Encoding": "gzip"}), ["gzip"])
        <...GzipDecoder ...>
    """
    accepted = {token.lower() for token in accepted} | {"identity"}
    tokens = [
        token.strip().lower()
        for token in headers.get_list("content-encoding", split_commas=True)
        if token.strip()
    ]

    decoders: List[ContentDecoder] = []
    for token in tokens:
        if token == "identity":
            continue
        decoder_cls = SUPPORTED_DECODERS.get(token)
        if decoder_cls is None or _TOKEN_ALIASES.get(token, token) not in accepted:
            logger.debug("Content-Encoding %r is not enabled, passing body through", token)
            return IdentityDecoder()
        decoders.append(decoder_cls())

    if not decoders:
        return IdentityDecoder()
    if len(decoders) == 1:
        return decoders[0]
    return MultiDecoder(decoders)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# STREAM
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class DecodedStream:
    """
    Ленивая распаковка поверх сырых chunks.

    Args:
        raw: Async iterator сырых chunks (после framing)
        decoder: ContentDecoder
        url: URL для сообщений об ошибках
        max_response_size: Лимит сырых байт
        max_decompressed_size: Лимит распакованных байт
    """

    def __init__(
        self,
        raw: AsyncIterator[bytes],
        decoder: ContentDecoder,
        url: Optional[str] = None,
        max_response_size: Optional[int] = None,
        max_decompressed_size: Optional[int] = None,
    ):
        self._raw = raw
        self._decoder = decoder
        self._url = url
        self._max_response_size = max_response_size
        self._max_decompressed_size = max_decompressed_size
        self.compressed_bytes = 0
        self.decompressed_bytes = 0

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._raw:
                self.compressed_bytes += len(chunk)
                if self._max_response_size and self.compressed_bytes > self._max_response_size:
                    raise ResponseTooLargeError(self.compressed_bytes, self._max_response_size, self._url)
                decoded = self._decode(self._decoder.decode, chunk)
                if decoded:
                    yield decoded

            tail = self._decode(lambda _: self._decoder.flush(), b"")
            if tail:
                yield tail
        finally:
            aclose = getattr(self._raw, "aclose", None)
            if aclose is not None:
                await aclose()

    def _decode(self, step, chunk: bytes) -> bytes:
        try:
            decoded = step(chunk)
        except DecodingError as exc:
            raise DecodingError(exc.message, self._url) from exc
        self.decompressed_bytes += len(decoded)
        if self._max_decompressed_size and self.decompressed_bytes > self._max_decompressed_size:
            raise DecompressionBombError(self.compressed_bytes, self.decompressed_bytes, self._url)
        return decoded
