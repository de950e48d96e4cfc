"""
Иерархия исключений nightfly.

Классификация:
- retryable=True - ошибка транспорта, повтор на новом соединении возможен
- fatal=True - НЕ повторять никогда (протокол, редиректы, конфигурация)

Каждое исключение несёт url и phase, чтобы вызывающий код мог отличить
"не удалось подключиться" от "сервер нарушил протокол" и от
"политика редиректов отказалась продолжать".
"""

import errno
import socket
import ssl
from typing import List, Optional

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BASE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class NightflyError(Exception):
    """Базовое исключение nightfly."""

    retryable: bool = False
    fatal: bool = False

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        phase: Optional[str] = None
    ):
        self.message = message
        self.url = url
        self.phase = phase

        full_message = message
        if url:
            full_message += f" (url: {url})"
        super().__init__(full_message)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ТРАНСПОРТ
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TransportError(NightflyError):
    """Ошибка на уровне соединения."""
    retryable = True


class ConnectError(TransportError):
    """
    Не удалось установить соединение.

    Примеры:
    - DNS не разрешился
    - Connection refused
    - TLS handshake failed
    """

    def __init__(self, message: str, url: Optional[str] = None, phase: str = "connect"):
        super().__init__(message, url, phase)


class ProxyError(ConnectError):
    """
    Ошибка прокси (в т.ч. отказ в CONNECT туннеле).

    Args:
        message: Сообщение
        url: Целевой URL
        proxy: Адрес прокси (без credentials)
        status_code: Статус ответа прокси на CONNECT
    """
    retryable = False
    fatal = True

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        proxy: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        self.proxy = proxy
        self.status_code = status_code
        msg = message
        if proxy:
            msg += f" (proxy: {proxy})"
        super().__init__(msg, url, phase="tunnel")


class ProtocolError(NightflyError):
    """
    Сервер нарушил HTTP framing.

    Примеры:
    - Невалидная status line
    - Битые заголовки
    - Невалидный chunk size
    """
    fatal = True

    def __init__(self, message: str, url: Optional[str] = None, phase: str = "response"):
        super().__init__(message, url, phase)


class TimeoutError(TransportError):
    """
    Таймаут.

    Args:
        message: Сообщение об ошибке
        url: URL запроса
        timeout: Значение таймаута
        phase: Фаза ('connect', 'read', 'total' или 'body')
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        phase: str = "read"
    ):
        self.timeout = timeout

        msg = f"{message} ({phase} timeout"
        if timeout:
            msg += f": {timeout}s"
        msg += ")"

        super().__init__(msg, url, phase)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# РЕДИРЕКТЫ (fatal=True)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class RedirectError(NightflyError):
    """
    Политика редиректов отказалась продолжать.

    Args:
        message: Сообщение
        url: URL на котором цепочка прервалась
        visited: Посещённые URL в порядке обхода
        hops: Количество выполненных переходов
    """
    fatal = True

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        visited: Optional[List[str]] = None,
        hops: int = 0
    ):
        self.visited = list(visited or [])
        self.hops = hops
        super().__init__(f"{message} after {hops} redirect(s)", url, phase="redirect")


class TooManyRedirects(RedirectError):
    """Превышен лимит переходов."""
    pass


class RedirectLoopError(RedirectError):
    """Цепочка вернулась на уже посещённый URL."""
    pass


class BodyNotReplayableError(RedirectError):
    """Redirect требует повторной отправки одноразового stream body."""
    pass


class InsecureRedirectError(RedirectError):
    """Редирект на http при включённом https_only."""
    pass

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ТЕЛО ОТВЕТА
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class BodyError(NightflyError):
    """
    Ошибка при чтении тела.

    Поднимается в момент, когда вызывающий код тянет сломанный chunk;
    уже отданные chunks остаются валидными.
    """

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, url, phase="body")


class DecodingError(BodyError):
    """Повреждённые или обрезанные сжатые данные."""
    pass


class ResponseTooLargeError(BodyError):
    """
    Ответ слишком большой.

    Args:
        size: Прочитано байт на момент срабатывания
        max_size: Максимально допустимый размер
        url: URL
    """

    def __init__(self, size: int, max_size: int, url: Optional[str] = None):
        self.size = size
        self.max_size = max_size
        super().__init__(f"Response too large: {size} bytes (max: {max_size})", url)


class DecompressionBombError(BodyError):
    """
    Распакованные данные превысили лимит.

    Args:
        compressed_size: Размер сжатых данных
        decompressed_size: Размер распакованных данных
        url: URL
    """

    def __init__(self, compressed_size: int, decompressed_size: int, url: Optional[str] = None):
        self.compressed_size = compressed_size
        self.decompressed_size = decompressed_size

        ratio = decompressed_size / compressed_size if compressed_size > 0 else 0

        super().__init__(
            f"Decompression bomb detected: {compressed_size} -> {decompressed_size} bytes "
            f"(ratio: {ratio:.1f}x)",
            url
        )

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# HTTP СТАТУСЫ (только через raise_for_status)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class HTTPStatusError(NightflyError):
    """
    Ответ со статусом 4xx/5xx.

    Клиент сам по статусу не падает; исключение поднимает
    Response.raise_for_status().

    Args:
        status_code: HTTP статус
        url: URL ответа
        reason_phrase: Reason phrase из status line
    """

    def __init__(self, status_code: int, url: Optional[str] = None, reason_phrase: str = ""):
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        msg = f"HTTP {status_code} error"
        if reason_phrase:
            msg += f": {reason_phrase}"
        super().__init__(msg, url, phase="status")


class ClientStatusError(HTTPStatusError):
    """4xx - повтор того же запроса не поможет."""
    fatal = True


class ServerStatusError(HTTPStatusError):
    """5xx - сервер может ответить иначе при повторе."""
    retryable = True

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ИСПОЛЬЗОВАНИЕ API
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class StreamError(NightflyError):
    """Неверное использование body API."""
    pass


class StreamConsumed(StreamError):
    """Тело уже прочитано потоково."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("Response body has already been streamed", url)


class ResponseNotRead(StreamError):
    """content/text/json вызваны до aread()."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("Call 'await response.aread()' before accessing content", url)


class ResponseClosed(StreamError):
    """Ответ закрыт до чтения тела."""

    def __init__(self, url: Optional[str] = None):
        super().__init__("Response body is closed", url)


class ConfigurationError(NightflyError):
    """Ошибка конфигурации."""
    fatal = True

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# УТИЛИТЫ
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def classify_os_error(
    exc: BaseException,
    url: Optional[str],
    phase: str = "connect"
) -> NightflyError:
    """
    Конвертировать OSError/ssl ошибки в наши исключения.

    Args:
        exc: Исходное исключение
        url: URL запроса
        phase: Фаза, в которой случилась ошибка

    Returns:
        Наше исключение с правильной классификацией

    Examples:
        >>> err = classify_os_error(ConnectionRefusedError(), "http://a.test/")
        >>> assert isinstance(err, ConnectError)
    """
    if isinstance(exc, NightflyError):
        return exc

    if isinstance(exc, socket.gaierror):
        return ConnectError(f"DNS resolution failed: {exc}", url, phase)

    if isinstance(exc, ssl.SSLError):
        return ConnectError(f"TLS handshake failed: {exc}", url, phase)

    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError, ConnectionAbortedError,
                        BrokenPipeError)):
        return ConnectError(f"Connection error: {exc.__class__.__name__}", url, phase)

    if isinstance(exc, OSError):
        reason = errno.errorcode.get(exc.errno, "") if exc.errno else ""
        detail = f"{reason}: {exc.strerror}" if reason else str(exc)
        return ConnectError(f"Network error: {detail}", url, phase)

    return NightflyError(str(exc), url, phase)
