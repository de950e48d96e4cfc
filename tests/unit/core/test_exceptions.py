"""Тесты иерархии исключений."""

import socket
import ssl

import pytest

from nightfly.core.exceptions import (
    BodyError,
    BodyNotReplayableError,
    ClientStatusError,
    ConnectError,
    DecodingError,
    DecompressionBombError,
    HTTPStatusError,
    NightflyError,
    ProtocolError,
    ProxyError,
    RedirectError,
    RedirectLoopError,
    ResponseTooLargeError,
    ServerStatusError,
    StreamConsumed,
    StreamError,
    TimeoutError,
    TooManyRedirects,
    TransportError,
    classify_os_error,
)


class TestHierarchy:
    """Классификация ошибок."""

    def test_all_errors_are_nightfly_errors(self):
        for error in (
            ConnectError("x"),
            ProxyError("x"),
            ProtocolError("x"),
            TimeoutError("x"),
            TooManyRedirects("x"),
            DecodingError("x"),
            StreamConsumed(),
        ):
            assert isinstance(error, NightflyError)

    def test_transport_errors_retryable(self):
        assert ConnectError("x").retryable is True
        assert TimeoutError("x").retryable is True
        assert isinstance(TimeoutError("x"), TransportError)

    def test_proxy_error_is_fatal(self):
        """Отказ прокси не повторяется."""
        error = ProxyError("refused", "https://a.test/", "http://proxy:3128", 407)
        assert error.fatal is True
        assert error.retryable is False
        assert error.status_code == 407
        assert error.proxy == "http://proxy:3128"
        assert error.phase == "tunnel"
        assert "proxy: http://proxy:3128" in str(error)

    def test_protocol_and_redirect_errors_fatal(self):
        assert ProtocolError("x").fatal is True
        assert RedirectLoopError("x").fatal is True
        assert BodyNotReplayableError("x").fatal is True

    def test_stream_errors(self):
        assert isinstance(StreamConsumed(), StreamError)
        assert not isinstance(StreamConsumed(), BodyError)

    def test_status_errors(self):
        """4xx не повторяется, 5xx можно повторить."""
        client_error = ClientStatusError(404, "http://a.test/", "Not Found")
        server_error = ServerStatusError(502, "http://a.test/")
        assert isinstance(client_error, HTTPStatusError)
        assert isinstance(server_error, HTTPStatusError)
        assert client_error.fatal is True
        assert client_error.retryable is False
        assert server_error.retryable is True
        assert server_error.fatal is False
        assert str(server_error) == "HTTP 502 error (url: http://a.test/)"


class TestMessages:
    """Контекст в исключениях."""

    def test_url_in_message(self):
        error = NightflyError("boom", url="http://a.test/")
        assert error.url == "http://a.test/"
        assert str(error) == "boom (url: http://a.test/)"

    def test_timeout_phase(self):
        error = TimeoutError("Timed out", "http://a.test/", 2.5, "connect")
        assert error.phase == "connect"
        assert error.timeout == 2.5
        assert "connect timeout: 2.5s" in str(error)

    def test_redirect_error_carries_chain(self):
        error = TooManyRedirects("limit", url="http://a.test/3", visited=["http://a.test/1"], hops=2)
        assert error.visited == ["http://a.test/1"]
        assert error.hops == 2
        assert error.phase == "redirect"
        assert "after 2 redirect(s)" in str(error)

    def test_body_errors_phase(self):
        assert DecodingError("bad").phase == "body"
        error = ResponseTooLargeError(200, 100, "http://a.test/")
        assert error.size == 200
        assert error.max_size == 100

    def test_decompression_bomb_ratio(self):
        error = DecompressionBombError(10, 1000)
        assert "100.0x" in str(error)


class TestClassifyOsError:
    """Конвертация OSError."""

    def test_dns_failure(self):
        error = classify_os_error(socket.gaierror(-2, "Name or service not known"), "http://a.test/")
        assert isinstance(error, ConnectError)
        assert "DNS resolution failed" in error.message

    def test_connection_refused(self):
        error = classify_os_error(ConnectionRefusedError(), "http://a.test/")
        assert isinstance(error, ConnectError)
        assert error.phase == "connect"

    def test_tls_error(self):
        error = classify_os_error(ssl.SSLError("bad cert"), "https://a.test/", phase="tls")
        assert isinstance(error, ConnectError)
        assert error.phase == "tls"

    def test_own_errors_pass_through(self):
        original = ProtocolError("x")
        assert classify_os_error(original, None) is original

    def test_generic_os_error(self):
        error = classify_os_error(OSError(113, "No route to host"), "http://a.test/", phase="send")
        assert isinstance(error, ConnectError)
        assert error.phase == "send"


@pytest.mark.parametrize("error_cls", [RedirectLoopError, TooManyRedirects, BodyNotReplayableError])
def test_redirect_subclasses(error_cls):
    assert issubclass(error_cls, RedirectError)
