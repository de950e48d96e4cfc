"""
Pytest fixtures for nightfly tests.

Integration tests run against a real asyncio loopback HTTP/1.1 server;
DNS overrides map *.test hosts to it.
"""

import asyncio
import gzip
import ssl
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from nightfly import Client, ClientConfig
from nightfly.core.connector import create_ssl_context

TLS_DIR = Path(__file__).parent / "fixtures" / "tls"


class RecordedRequest:
    """Request as seen by the loopback server."""

    def __init__(self, method: str, target: str, headers: httpx.Headers, body: bytes, connection_id: int):
        self.method = method
        self.target = target
        self.headers = headers
        self.body = body
        self.connection_id = connection_id

    def __repr__(self) -> str:
        return f"<RecordedRequest {self.method} {self.target} conn={self.connection_id}>"


def build_response(
    status: int = 200,
    headers: Optional[List[Tuple[str, str]]] = None,
    body: bytes = b"",
    reason: str = "OK",
    content_length: bool = True,
) -> bytes:
    """Serialize a raw HTTP/1.1 response."""
    lines = [f"HTTP/1.1 {status} {reason}"]
    headers = list(headers or [])
    if content_length and not any(name.lower() in ("content-length", "transfer-encoding") for name, _ in headers):
        headers.append(("Content-Length", str(len(body))))
    lines.extend(f"{name}: {value}" for name, value in headers)
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


def gzip_bytes(data: bytes) -> bytes:
    return gzip.compress(data)


Handler = Callable[[RecordedRequest, asyncio.StreamWriter], Awaitable[None]]


class LoopbackServer:
    """
    Minimal HTTP/1.1 server on 127.0.0.1.

    The handler writes the raw response itself; the connection stays open
    for the next request unless the handler closes the writer.
    """

    def __init__(self, handler: Handler, ssl_context: Optional[ssl.SSLContext] = None):
        self.handler = handler
        self.ssl_context = ssl_context
        self.requests: List[RecordedRequest] = []
        self.connections = 0
        self.port = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def base(self) -> str:
        scheme = "https" if self.ssl_context is not None else "http"
        return f"{scheme}://127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._on_connection, "127.0.0.1", 0, ssl=self.ssl_context
        )
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
        for writer in self._writers:
            writer.close()
        # Обработчики, застрявшие в sleep (тесты таймаутов)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _on_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        connection_id = self.connections
        self._writers.append(writer)
        self._tasks.append(asyncio.current_task())
        try:
            while not writer.is_closing():
                request = await self._read_request(reader, connection_id)
                if request is None:
                    break
                self.requests.append(request)
                await self.handler(request, writer)
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()

    async def _read_request(self, reader: asyncio.StreamReader, connection_id: int) -> Optional[RecordedRequest]:
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except asyncio.IncompleteReadError:
            return None

        lines = head.decode("latin-1").split("\r\n")
        method, target, _version = lines[0].split(" ", 2)
        headers = httpx.Headers([tuple(line.split(": ", 1)) for line in lines[1:] if line])

        body = b""
        if headers.get("transfer-encoding", "").lower() == "chunked":
            chunks = []
            while True:
                size = int((await reader.readuntil(b"\r\n")).strip(), 16)
                if size == 0:
                    await reader.readuntil(b"\r\n")
                    break
                chunks.append(await reader.readexactly(size))
                await reader.readexactly(2)
            body = b"".join(chunks)
        elif "content-length" in headers:
            body = await reader.readexactly(int(headers["content-length"]))

        return RecordedRequest(method, target, headers, body, connection_id)


def route(routes: Dict[str, Callable[[RecordedRequest], bytes]]) -> Handler:
    """Handler dispatching on request path; unknown paths get 404."""

    async def handler(request: RecordedRequest, writer: asyncio.StreamWriter) -> None:
        path = request.target
        if "://" in path:
            path = "/" + path.split("://", 1)[1].split("/", 1)[-1]
        responder = routes.get(path.split("?", 1)[0])
        if responder is None:
            writer.write(build_response(404, body=b"not found", reason="Not Found"))
            return
        writer.write(responder(request))

    return handler


@pytest.fixture
def serve():
    """
    Factory for loopback servers.

    Example:
        async with serve(handler) as server:
            ...
    """

    @asynccontextmanager
    async def _serve(handler: Handler, ssl_context: Optional[ssl.SSLContext] = None):
        server = LoopbackServer(handler, ssl_context)
        await server.start()
        try:
            yield server
        finally:
            await server.stop()

    return _serve


@pytest.fixture
def make_client():
    """
    Factory for clients that resolve *.test hosts to a loopback server.

    Environment proxies are ignored so tests do not depend on the host setup.
    """

    def _make(server: LoopbackServer, hosts=("a.test", "b.test", "api.example.com", "example.org"), **kwargs):
        overrides = {host: [("127.0.0.1", server.port)] for host in hosts}
        kwargs.setdefault("trust_env", False)
        return Client(ClientConfig(dns_overrides=overrides, **kwargs))

    return _make


@pytest.fixture
def server_tls_context() -> ssl.SSLContext:
    """Серверный контекст с сертификатом secure.test/localhost/127.0.0.1."""
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(TLS_DIR / "server.pem", TLS_DIR / "server.key")
    return context


@pytest.fixture
def client_tls_context() -> ssl.SSLContext:
    """Клиентский контекст nightfly, дополнительно доверяющий тестовому CA."""
    context = create_ssl_context()
    context.load_verify_locations(cafile=str(TLS_DIR / "ca.pem"))
    return context
