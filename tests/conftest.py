import asyncio
import gzip
import json
import os
import threading
import time
import typing
import zlib
from urllib.parse import parse_qs

import pytest
import trustme
from uvicorn.config import Config
from uvicorn.server import Server

ENVIRONMENT_VARIABLES = {
    "SSL_CERT_FILE",
    "SSL_CERT_DIR",
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "ALL_PROXY",
    "NO_PROXY",
    "SSLKEYLOGFILE",
}


@pytest.fixture(scope="function", autouse=True)
def clean_environ():
    """Keeps os.environ clean for every test without having to mock os.environ"""
    original_environ = os.environ.copy()
    os.environ.clear()
    os.environ.update(
        {
            k: v
            for k, v in original_environ.items()
            if k.upper() not in ENVIRONMENT_VARIABLES
        }
    )
    yield
    os.environ.clear()
    os.environ.update(original_environ)


Message = typing.Dict[str, typing.Any]
Receive = typing.Callable[[], typing.Awaitable[Message]]
Send = typing.Callable[
    [typing.Dict[str, typing.Any]], typing.Coroutine[None, None, None]
]
Scope = typing.Dict[str, typing.Any]

LARGE_BODY = b"x" * (1024 * 1024)


async def app(scope: Scope, receive: Receive, send: Send) -> None:
    assert scope["type"] == "http"
    path = scope["path"]
    if "://" in path:
        # Absolute-form target, as sent to a forward proxy.
        path = "/" + path.split("/", 3)[3]
    if path.startswith("/slow_response"):
        await slow_response(scope, receive, send)
    elif path.startswith("/status"):
        await status_code(scope, receive, send)
    elif path.startswith("/echo_body"):
        await echo_body(scope, receive, send)
    elif path.startswith("/echo_request"):
        await echo_request(scope, receive, send)
    elif path.startswith("/client_port"):
        await client_port(scope, receive, send)
    elif path.startswith("/gzip_error"):
        await gzip_error(scope, receive, send)
    elif path.startswith("/gzip"):
        await gzip_body(scope, receive, send)
    elif path.startswith("/deflate"):
        await deflate_body(scope, receive, send)
    elif path.startswith("/raw_deflate"):
        await raw_deflate_body(scope, receive, send)
    elif path.startswith("/json_error"):
        await json_error(scope, receive, send)
    elif path.startswith("/no_content"):
        await no_content(scope, receive, send)
    elif path.startswith("/large"):
        await large_body(scope, receive, send)
    elif path.startswith("/redirect_301"):
        await redirect(scope, receive, send, 301, b"/")
    elif path.startswith("/redirect_303"):
        await redirect(scope, receive, send, 303, b"/echo_request")
    elif path.startswith("/redirect_loop"):
        await redirect(scope, receive, send, 302, b"/redirect_loop")
    elif path.startswith("/redirect_to"):
        await redirect_to(scope, receive, send)
    elif path.startswith("/dated"):
        await dated(scope, receive, send)
    else:
        await hello_world(scope, receive, send)


async def read_body(receive: Receive) -> bytes:
    body = b""
    more_body = True
    while more_body:
        message = await receive()
        body += message.get("body", b"")
        more_body = message.get("more_body", False)
    return body


async def respond(
    send: Send,
    status: int,
    body: bytes = b"",
    headers: typing.Optional[typing.List[typing.List[bytes]]] = None,
) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": headers or [],
        }
    )
    await send({"type": "http.response.body", "body": body})


async def hello_world(scope: Scope, receive: Receive, send: Send) -> None:
    await respond(send, 200, b"Hello, world!", [[b"content-type", b"text/plain"]])


async def slow_response(scope: Scope, receive: Receive, send: Send) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [[b"content-type", b"text/plain"]],
        }
    )
    await asyncio.sleep(1.0)  # Allow triggering a read timeout.
    await send({"type": "http.response.body", "body": b"Hello, world!"})


async def status_code(scope: Scope, receive: Receive, send: Send) -> None:
    status_code = int(scope["path"].replace("/status/", ""))
    body = b"" if status_code in (204, 304) else b"Hello, world!"
    await respond(send, status_code, body, [[b"content-type", b"text/plain"]])


async def echo_body(scope: Scope, receive: Receive, send: Send) -> None:
    body = await read_body(receive)
    content_type = dict(scope["headers"]).get(b"content-type", b"application/octet-stream")
    await respond(send, 200, body, [[b"content-type", content_type]])


async def echo_request(scope: Scope, receive: Receive, send: Send) -> None:
    body = await read_body(receive)
    headers: typing.Dict[str, typing.List[str]] = {}
    for name, value in scope.get("headers", []):
        headers.setdefault(name.decode("latin-1"), []).append(value.decode("latin-1"))
    payload = {
        "method": scope["method"],
        "path": scope["path"],
        "query": scope["query_string"].decode("latin-1"),
        "headers": headers,
        "body": body.decode("latin-1"),
    }
    await respond(
        send, 200, json.dumps(payload).encode(), [[b"content-type", b"application/json"]]
    )


async def client_port(scope: Scope, receive: Receive, send: Send) -> None:
    await read_body(receive)
    port = str(scope["client"][1]).encode()
    await respond(send, 200, port, [[b"content-type", b"text/plain"]])


async def gzip_body(scope: Scope, receive: Receive, send: Send) -> None:
    body = gzip.compress(b"Hello, gzip!")
    await respond(
        send,
        200,
        body,
        [[b"content-type", b"text/plain; charset=utf-8"], [b"content-encoding", b"gzip"]],
    )


async def deflate_body(scope: Scope, receive: Receive, send: Send) -> None:
    body = zlib.compress(b"Hello, deflate!")
    await respond(
        send,
        200,
        body,
        [[b"content-type", b"text/plain"], [b"content-encoding", b"deflate"]],
    )


async def raw_deflate_body(scope: Scope, receive: Receive, send: Send) -> None:
    compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
    body = compressor.compress(b"Hello, raw deflate!") + compressor.flush()
    await respond(
        send,
        200,
        body,
        [[b"content-type", b"text/plain"], [b"content-encoding", b"deflate"]],
    )


async def gzip_error(scope: Scope, receive: Receive, send: Send) -> None:
    body = gzip.compress(b'{"error": "not found"}')
    await respond(
        send,
        404,
        body,
        [[b"content-type", b"application/json"], [b"content-encoding", b"gzip"]],
    )


async def json_error(scope: Scope, receive: Receive, send: Send) -> None:
    await respond(
        send,
        404,
        b'{"error": "not found", "detail": "caf\xc3\xa9"}',
        [[b"content-type", b"application/json; charset=utf-8"]],
    )


async def no_content(scope: Scope, receive: Receive, send: Send) -> None:
    await read_body(receive)
    await respond(send, 204)


async def large_body(scope: Scope, receive: Receive, send: Send) -> None:
    await respond(send, 200, LARGE_BODY, [[b"content-type", b"application/octet-stream"]])


async def redirect(
    scope: Scope, receive: Receive, send: Send, status: int, location: bytes
) -> None:
    await read_body(receive)
    await respond(send, status, b"", [[b"location", location]])


async def redirect_to(scope: Scope, receive: Receive, send: Send) -> None:
    query = parse_qs(scope["query_string"].decode("latin-1"))
    await redirect(scope, receive, send, 302, query["location"][0].encode("latin-1"))


async def dated(scope: Scope, receive: Receive, send: Send) -> None:
    await respond(
        send,
        200,
        b"dated",
        [
            [b"content-type", b"text/plain"],
            [b"expires", b"Thu, 01 Dec 2044 16:00:00 GMT"],
            [b"last-modified", b"Wed, 21 Oct 2015 07:28:00 GMT"],
            [b"x-multi", b"one"],
            [b"x-multi", b"two"],
        ],
    )


@pytest.fixture(scope="session")
def cert_authority():
    return trustme.CA()


@pytest.fixture(scope="session")
def localhost_cert(cert_authority):
    return cert_authority.issue_cert("localhost")


@pytest.fixture(scope="session")
def cert_pem_file(localhost_cert):
    with localhost_cert.cert_chain_pems[0].tempfile() as tmp:
        yield tmp


@pytest.fixture(scope="session")
def cert_private_key_file(localhost_cert):
    with localhost_cert.private_key_pem.tempfile() as tmp:
        yield tmp


@pytest.fixture(scope="session")
def ca_cert_pem_file(cert_authority):
    with cert_authority.cert_pem.tempfile() as tmp:
        yield tmp


class TestServer(Server):
    def install_signal_handlers(self) -> None:
        # Disable the default installation of handlers for signals such as SIGTERM,
        # because it can only be done in the main thread.
        pass

    @property
    def url(self) -> str:
        protocol = "https" if self.config.is_ssl else "http"
        port = self.servers[0].sockets[0].getsockname()[1]
        return f"{protocol}://{self.config.host}:{port}/"

    def url_for(self, path: str) -> str:
        return self.url.rstrip("/") + path


def serve_in_thread(server: TestServer) -> typing.Iterator[TestServer]:
    thread = threading.Thread(target=server.run)
    thread.start()
    try:
        while not server.started:
            time.sleep(1e-3)
        yield server
    finally:
        server.should_exit = True
        thread.join()


@pytest.fixture(scope="session")
def server() -> typing.Iterator[TestServer]:
    config = Config(app=app, lifespan="off", loop="asyncio", host="127.0.0.1", port=0)
    server = TestServer(config=config)
    yield from serve_in_thread(server)


@pytest.fixture(scope="session")
def https_server(
    cert_pem_file: str, cert_private_key_file: str
) -> typing.Iterator[TestServer]:
    config = Config(
        app=app,
        lifespan="off",
        loop="asyncio",
        ssl_certfile=cert_pem_file,
        ssl_keyfile=cert_private_key_file,
        host="localhost",
        port=0,
    )
    server = TestServer(config=config)
    yield from serve_in_thread(server)
