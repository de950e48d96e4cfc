"""
HTTP/1.1 wire framing.

Чистые функции без I/O: сериализация head запроса, разбор status line и
заголовков, выбор способа framing тела ответа. Чтение из сокета живёт в
transport.py.
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import httpx

from .exceptions import ProtocolError

# Лимиты на head ответа
MAX_HEAD_SIZE = 64 * 1024
MAX_HEADER_COUNT = 256

READ_CHUNK_SIZE = 64 * 1024

_STATUS_LINE = re.compile(rb"^HTTP/(\d)\.(\d) (\d{3})(?: (.*))?$")
_TOKEN = re.compile(rb"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REQUEST HEAD
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def request_target(url: httpx.URL, absolute: bool = False) -> str:
    """
    Request target для request line.

    absolute=True - absolute-form для plain HTTP через прокси.
    """
    path = url.raw_path.decode("ascii") or "/"
    if absolute:
        netloc = url.netloc.decode("ascii")
        return f"{url.scheme}://{netloc}{path}"
    return path


def host_header(url: httpx.URL) -> str:
    """Значение Host: порт указывается только если он не дефолтный."""
    return url.netloc.decode("ascii")


def encode_request_head(method: str, target: str, headers: Iterable[Tuple[str, str]]) -> bytes:
    """
    Сериализовать request line и заголовки.

    Raises:
        ValueError: CR/LF в имени или значении заголовка
    """
    lines = [f"{method} {target} HTTP/1.1"]
    for name, value in headers:
        if "\r" in name or "\n" in name or "\r" in value or "\n" in value:
            raise ValueError(f"Invalid header {name!r}: contains CR or LF")
        lines.append(f"{name}: {value}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


def encode_chunk(data: bytes) -> bytes:
    """Один chunk chunked transfer encoding."""
    return b"%x\r\n%s\r\n" % (len(data), data)


LAST_CHUNK = b"0\r\n\r\n"

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RESPONSE HEAD
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class ResponseHead:
    """Разобранные status line и заголовки ответа."""
    http_version: str
    status_code: int
    reason_phrase: str
    headers: httpx.Headers

    @property
    def is_informational(self) -> bool:
        return 100 <= self.status_code < 200


def parse_status_line(line: bytes, url: Optional[str] = None) -> Tuple[str, int, str]:
    """
    Разобрать status line.

    Example:
        >>> parse_status_line(b"HTTP/1.1 302 Found")
        ('HTTP/1.1', 302, 'Found')
    """
    match = _STATUS_LINE.match(line.rstrip(b"\r\n"))
    if match is None:
        raise ProtocolError(f"Invalid status line: {line[:100]!r}", url)
    major, minor, status, reason = match.groups()
    return (
        f"HTTP/{major.decode()}.{minor.decode()}",
        int(status),
        (reason or b"").decode("latin-1").strip(),
    )


def parse_headers(lines: List[bytes], url: Optional[str] = None) -> List[Tuple[str, str]]:
    """
    Разобрать строки заголовков (без завершающей пустой строки).

    Obsolete line folding склеивается с предыдущим заголовком.
    """
    if len(lines) > MAX_HEADER_COUNT:
        raise ProtocolError(f"Too many response headers ({len(lines)})", url)

    headers: List[Tuple[str, str]] = []
    for raw in lines:
        if raw[:1] in (b" ", b"\t"):
            if not headers:
                raise ProtocolError("Header continuation without a header", url)
            name, value = headers[-1]
            headers[-1] = (name, f"{value} {raw.strip().decode('latin-1')}")
            continue

        name, sep, value = raw.partition(b":")
        if not sep or not _TOKEN.match(name):
            raise ProtocolError(f"Invalid header line: {raw[:100]!r}", url)
        headers.append((name.decode("ascii"), value.strip().decode("latin-1")))
    return headers


def parse_response_head(data: bytes, url: Optional[str] = None) -> ResponseHead:
    """
    Разобрать head ответа целиком (status line + заголовки + CRLFCRLF).

    Example:
        >>> head = parse_response_head(b"HTTP/1.1 200 OK\\r\\nContent-Length: 2\\r\\n\\r\\n")
        >>> head.status_code
        200
    """
    lines = data.split(b"\r\n")
    while lines and lines[-1] == b"":
        lines.pop()
    if not lines:
        raise ProtocolError("Empty response head", url)

    http_version, status_code, reason = parse_status_line(lines[0], url)
    headers = parse_headers(lines[1:], url)
    return ResponseHead(http_version, status_code, reason, httpx.Headers(headers))

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BODY FRAMING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class BodyFraming:
    """
    Как определяется конец тела ответа.

    kind:
        'empty'   - тела нет (HEAD, 1xx, 204, 304)
        'length'  - ровно length байт
        'chunked' - chunked transfer encoding
        'close'   - до закрытия соединения
    """
    kind: str
    length: Optional[int] = None

    @property
    def reuses_connection(self) -> bool:
        return self.kind != "close"


def body_framing(method: str, head: ResponseHead, url: Optional[str] = None) -> BodyFraming:
    """
    Выбрать framing тела по RFC 9112 section 6.3.

    Raises:
        ProtocolError: Невалидный Content-Length или Transfer-Encoding
    """
    status = head.status_code
    if method == "HEAD" or 100 <= status < 200 or status in (204, 304):
        return BodyFraming("empty", 0)

    transfer_encoding = [
        token.strip().lower()
        for token in head.headers.get_list("transfer-encoding", split_commas=True)
        if token.strip()
    ]
    if transfer_encoding:
        if transfer_encoding[-1] == "chunked":
            return BodyFraming("chunked")
        return BodyFraming("close")

    lengths = head.headers.get_list("content-length", split_commas=True)
    if lengths:
        values = {value.strip() for value in lengths}
        if len(values) != 1:
            raise ProtocolError(f"Conflicting Content-Length values: {sorted(values)}", url)
        value = values.pop()
        if not value.isdigit():
            raise ProtocolError(f"Invalid Content-Length: {value!r}", url)
        length = int(value)
        return BodyFraming("length", length) if length else BodyFraming("empty", 0)

    return BodyFraming("close")


def keep_alive(head: ResponseHead) -> bool:
    """
    Можно ли переиспользовать соединение после ответа.

    HTTP/1.1 persistent по умолчанию; HTTP/1.0 только с keep-alive.
    """
    tokens = {
        token.strip().lower()
        for token in head.headers.get_list("connection", split_commas=True)
    }
    if "close" in tokens:
        return False
    if head.http_version == "HTTP/1.0":
        return "keep-alive" in tokens
    return True


def parse_chunk_size(line: bytes, url: Optional[str] = None) -> int:
    """Размер chunk из строки вида b'1a;ext=1\\r\\n'."""
    size = line.split(b";", 1)[0].strip()
    try:
        if not size:
            raise ValueError(size)
        value = int(size, 16)
    except ValueError:
        raise ProtocolError(f"Invalid chunk size line: {line[:100]!r}", url)
    if value < 0:
        raise ProtocolError(f"Invalid chunk size line: {line[:100]!r}", url)
    return value
