"""
Интеграционные тесты Client против loopback HTTP/1.1 сервера.

Редиректы, cookies, распаковка, потоковое тело.
"""

import gzip
import json

import httpx
import pytest

from conftest import build_response, route
from nightfly import (
    Client,
    ClientConfig,
    DecompressionConfig,
    DecodingError,
    RedirectLoopError,
    RedirectPolicy,
    Request,
    ClientStatusError,
    ResponseNotRead,
    StreamConsumed,
    TooManyRedirects,
)
from nightfly.core.logging import LoggingConfig

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Базовый сценарий
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@pytest.mark.asyncio
async def test_redirect_cookie_and_gzip(serve, make_client):
    """302 -> /next -> 200 с Set-Cookie и gzip телом."""
    handler = route({
        "/start": lambda req: build_response(302, [("Location", "/next")], reason="Found"),
        "/next": lambda req: build_response(
            200,
            [("Set-Cookie", "id=42; Path=/"), ("Content-Encoding", "gzip")],
            gzip.compress(b"hello from next"),
        ),
    })

    async with serve(handler) as server:
        async with make_client(server) as client:
            response = await client.get("http://a.test/start")

            assert response.status_code == 200
            assert response.url == httpx.URL("http://a.test/next")
            assert response.content == b"hello from next"
            assert [r.status_code for r in response.history] == [302]
            assert client.cookies.get("id", domain="a.test", path="/") == "42"

            first, second = server.requests
            assert first.headers["host"] == "a.test"
            assert first.headers["accept"] == "*/*"
            assert first.headers["accept-encoding"] == "gzip, deflate, br"
            assert second.target == "/next"
            assert second.headers["referer"] == "http://a.test/start"
            # Редирект на тот же хост - то же соединение
            assert second.connection_id == first.connection_id

            await client.get("http://a.test/next")
            assert server.requests[-1].headers["cookie"] == "id=42"


@pytest.mark.asyncio
async def test_json_post(serve, make_client):
    def echo(req):
        return build_response(201, [("Content-Type", "application/json")], req.body)

    async with serve(route({"/items": echo})) as server:
        async with make_client(server) as client:
            response = await client.post("http://a.test/items", json={"name": "widget"})

    assert response.status_code == 201
    assert response.json() == {"name": "widget"}
    recorded = server.requests[0]
    assert recorded.headers["content-type"] == "application/json"
    assert recorded.headers["content-length"] == str(len(recorded.body))


@pytest.mark.asyncio
async def test_default_headers_and_user_agent(serve, make_client):
    async with serve(route({"/": lambda req: build_response(200)})) as server:
        async with make_client(server, headers={"X-Team": "core"}, user_agent="nightfly-test/1.0") as client:
            await client.get("http://a.test/", headers={"Accept": "text/plain"})

    headers = server.requests[0].headers
    assert headers["x-team"] == "core"
    assert headers["user-agent"] == "nightfly-test/1.0"
    assert headers["accept"] == "text/plain"
    assert "content-length" not in headers


@pytest.mark.asyncio
async def test_interim_response_skipped(serve, make_client):
    def continue_then_ok(req):
        return b"HTTP/1.1 100 Continue\r\n\r\n" + build_response(200, body=b"final")

    async with serve(route({"/": continue_then_ok})) as server:
        async with make_client(server) as client:
            response = await client.get("http://a.test/")

    assert response.status_code == 200
    assert response.content == b"final"

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Редиректы
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def hop(location, status=302):
    return lambda req: build_response(status, [("Location", location)], b"moved")


@pytest.mark.asyncio
async def test_redirect_chain(serve, make_client):
    handler = route({
        "/r1": hop("/r2"),
        "/r2": hop("/r3", 301),
        "/r3": hop("/final", 307),
        "/final": lambda req: build_response(200, body=b"done"),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            response = await client.get("http://a.test/r1")

    assert response.content == b"done"
    assert [r.status_code for r in response.history] == [302, 301, 307]
    assert [str(r.url) for r in response.history] == [
        "http://a.test/r1", "http://a.test/r2", "http://a.test/r3",
    ]
    assert server.connections == 1


@pytest.mark.asyncio
async def test_redirect_limit(serve, make_client):
    handler = route({"/r1": hop("/r2"), "/r2": hop("/r3"), "/r3": hop("/r4")})
    async with serve(handler) as server:
        async with make_client(server, redirect=RedirectPolicy.limited(2)) as client:
            with pytest.raises(TooManyRedirects) as exc_info:
                await client.get("http://a.test/r1")

    assert exc_info.value.hops == 2
    assert exc_info.value.visited[-1] == "http://a.test/r4"


@pytest.mark.asyncio
async def test_redirect_loop(serve, make_client):
    handler = route({"/a": hop("/b"), "/b": hop("/a")})
    async with serve(handler) as server:
        async with make_client(server) as client:
            with pytest.raises(RedirectLoopError):
                await client.get("http://a.test/a")
    assert len(server.requests) == 2


@pytest.mark.asyncio
async def test_redirects_disabled(serve, make_client):
    async with serve(route({"/a": hop("/b")})) as server:
        async with make_client(server, redirect=RedirectPolicy.none()) as client:
            response = await client.get("http://a.test/a")

    assert response.status_code == 302
    assert response.is_redirect is True
    assert response.content == b"moved"


@pytest.mark.asyncio
async def test_301_post_becomes_get(serve, make_client):
    handler = route({
        "/form": hop("/result", 301),
        "/result": lambda req: build_response(200, body=req.method.encode()),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            response = await client.post("http://a.test/form", content=b"a=1")

    assert response.content == b"GET"
    redirected = server.requests[1]
    assert redirected.body == b""
    assert "content-length" not in redirected.headers


@pytest.mark.asyncio
async def test_307_resends_body(serve, make_client):
    handler = route({
        "/upload": hop("/upload-v2", 307),
        "/upload-v2": lambda req: build_response(200, body=req.body),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            response = await client.post("http://a.test/upload", content=b"payload")

    assert response.content == b"payload"
    assert server.requests[1].method == "POST"


@pytest.mark.asyncio
async def test_cross_host_redirect_strips_credentials(serve, make_client):
    handler = route({
        "/start": hop("http://b.test/land"),
        "/land": lambda req: build_response(200),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            await client.get("http://a.test/start", headers={"Authorization": "Bearer secret"})

    first, second = server.requests
    assert first.headers["authorization"] == "Bearer secret"
    assert "authorization" not in second.headers
    assert second.headers["host"] == "b.test"
    # Другой ключ - другое соединение
    assert second.connection_id != first.connection_id

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Cookies
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@pytest.mark.asyncio
async def test_caller_cookie_merged_with_jar(serve, make_client):
    async with serve(route({"/": lambda req: build_response(200)})) as server:
        async with make_client(server) as client:
            client.cookies.set("id", "from-jar", domain="a.test")
            client.cookies.set("theme", "dark", domain="a.test")
            await client.get("http://a.test/", headers={"Cookie": "id=override"})

    assert server.requests[0].headers["cookie"] == "id=override; theme=dark"


@pytest.mark.asyncio
async def test_domain_cookie_shared_with_subdomain(serve, make_client):
    handler = route({
        "/login": lambda req: build_response(200, [("Set-Cookie", "sid=s1; Domain=example.com; Path=/")]),
        "/api": lambda req: build_response(200),
    })
    async with serve(handler) as server:
        hosts = ("www.example.com", "api.example.com", "example.org")
        async with make_client(server, hosts=hosts) as client:
            await client.get("http://www.example.com/login")
            await client.get("http://api.example.com/api")
            await client.get("http://example.org/api")

    assert server.requests[1].headers["cookie"] == "sid=s1"
    assert "cookie" not in server.requests[2].headers


@pytest.mark.asyncio
async def test_cookie_store_disabled(serve, make_client):
    handler = route({"/": lambda req: build_response(200, [("Set-Cookie", "id=1")])})
    async with serve(handler) as server:
        async with make_client(server, cookie_store=False) as client:
            await client.get("http://a.test/")
            await client.get("http://a.test/")
            assert client.cookies is None

    assert "cookie" not in server.requests[1].headers


@pytest.mark.asyncio
async def test_response_cookies_without_store(serve, make_client):
    """response.cookies разбирает Set-Cookie и без jar."""
    handler = route({"/": lambda req: build_response(200, [("Set-Cookie", "id=1; Path=/"), ("Set-Cookie", "bad")])})
    async with serve(handler) as server:
        async with make_client(server, cookie_store=False) as client:
            response = await client.get("http://a.test/")

    assert [(c.name, c.value, c.domain) for c in response.cookies] == [("id", "1", "a.test")]

@pytest.mark.asyncio
async def test_raise_for_status(serve, make_client):
    handler = route({
        "/ok": lambda req: build_response(200, body=b"fine"),
        "/missing": lambda req: build_response(404, reason="Not Found"),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            response = await client.get("http://a.test/ok")
            assert response.raise_for_status().content == b"fine"

            missing = await client.get("http://a.test/missing")
            with pytest.raises(ClientStatusError) as exc_info:
                missing.raise_for_status()

    assert exc_info.value.status_code == 404
    assert exc_info.value.url == "http://a.test/missing"

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Тело ответа
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

CHUNKED_BODY = b"5\r\nhello\r\n6\r\n world\r\n0\r\n\r\n"


@pytest.mark.asyncio
async def test_chunked_streaming(serve, make_client):
    handler = route({
        "/big": lambda req: build_response(200, [("Transfer-Encoding", "chunked")], CHUNKED_BODY),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            async with client.stream("GET", "http://a.test/big") as response:
                with pytest.raises(ResponseNotRead):
                    response.content
                chunks = [chunk async for chunk in response.aiter_bytes()]
                with pytest.raises(StreamConsumed):
                    async for _chunk in response.aiter_bytes():
                        pass

            assert b"".join(chunks) == b"hello world"
            # Тело дочитано - соединение вернулось в пул
            await client.get("http://a.test/big")
            assert server.connections == 1


@pytest.mark.asyncio
async def test_execute_returns_unread_body(serve, make_client):
    async with serve(route({"/": lambda req: build_response(200, body=b"lazy")})) as server:
        async with make_client(server) as client:
            response = await client.execute(Request("GET", "http://a.test/"))
            assert client.pool_stats()["in_use"] == 1
            assert await response.aread() == b"lazy"
            assert client.pool_stats()["in_use"] == 0
            assert client.pool_stats()["idle"] == 1


@pytest.mark.asyncio
async def test_unread_body_closes_connection(serve, make_client):
    async with serve(route({"/": lambda req: build_response(200, body=b"x" * 1000)})) as server:
        async with make_client(server) as client:
            async with client.stream("GET", "http://a.test/"):
                pass
            await client.get("http://a.test/")

    assert server.connections == 2


@pytest.mark.asyncio
async def test_truncated_gzip_fails_on_read(serve, make_client):
    body = gzip.compress(b"z" * 10_000)[:-12]
    handler = route({"/": lambda req: build_response(200, [("Content-Encoding", "gzip")], body)})
    async with serve(handler) as server:
        async with make_client(server) as client:
            async with client.stream("GET", "http://a.test/") as response:
                # Заголовки пришли без ошибки
                assert response.status_code == 200
                with pytest.raises(DecodingError):
                    await response.aread()


@pytest.mark.asyncio
async def test_disabled_encoding_passes_through(serve, make_client):
    body = gzip.compress(b"raw")
    handler = route({"/": lambda req: build_response(200, [("Content-Encoding", "gzip")], body)})
    async with serve(handler) as server:
        async with make_client(server, decompression=DecompressionConfig(gzip=False)) as client:
            response = await client.get("http://a.test/")

    assert response.content == body
    assert server.requests[0].headers["accept-encoding"] == "deflate, br"


@pytest.mark.asyncio
async def test_head_and_204_have_no_body(serve, make_client):
    handler = route({
        "/resource": lambda req: build_response(200, [("Content-Length", "100")]),
        "/empty": lambda req: build_response(204, reason="No Content", content_length=False),
    })
    async with serve(handler) as server:
        async with make_client(server) as client:
            head = await client.head("http://a.test/resource")
            empty = await client.delete("http://a.test/empty")
            again = await client.head("http://a.test/resource")

    assert head.content == b""
    assert head.headers["content-length"] == "100"
    assert empty.status_code == 204
    assert empty.content == b""
    assert again.status_code == 200
    assert server.connections == 1


@pytest.mark.asyncio
async def test_read_until_close(serve, make_client):
    async def handler(request, writer):
        writer.write(b"HTTP/1.1 200 OK\r\n\r\nbody until close")
        writer.close()

    async with serve(handler) as server:
        async with make_client(server) as client:
            response = await client.get("http://a.test/")
            assert response.content == b"body until close"
            assert client.pool_stats()["idle"] == 0


@pytest.mark.asyncio
async def test_connection_close_header(serve, make_client):
    handler = route({"/": lambda req: build_response(200, [("Connection", "close")], b"ok")})
    async with serve(handler) as server:
        async with make_client(server) as client:
            await client.get("http://a.test/")
            await client.get("http://a.test/")

    assert server.connections == 2

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Клиент
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@pytest.mark.asyncio
async def test_closed_client_rejects_requests(serve, make_client):
    async with serve(route({})) as server:
        client = make_client(server)
        await client.aclose()
        with pytest.raises(RuntimeError, match="client has been closed"):
            await client.get("http://a.test/")


def test_config_and_kwargs_exclusive():
    with pytest.raises(ValueError):
        Client(ClientConfig(), user_agent="x")


@pytest.mark.asyncio
async def test_structured_logging(serve, make_client, tmp_path):
    log_file = tmp_path / "client.log"
    logging_config = LoggingConfig.create(
        level="INFO",
        format="json",
        enable_console=False,
        enable_file=True,
        file_path=str(log_file),
        logger_name="nightfly.test.integration",
    )
    handler = route({
        "/start": hop("/next"),
        "/next": lambda req: build_response(200),
    })
    async with serve(handler) as server:
        async with make_client(server, logging=logging_config) as client:
            await client.get("http://a.test/start?token=abc")

    records = [json.loads(line) for line in log_file.read_text().splitlines()]
    messages = [record["message"] for record in records]
    assert messages == ["Following redirect", "HTTP request finished"]
    assert "abc" not in records[0]["url"]
    assert records[1]["status_code"] == 200
    assert records[1]["redirects"] == 1
