"""
The transport underneath requests and responses: one HTTP exchange over a
``http.client`` connection, plus the cache of idle keep-alive connections
that exchanges borrow from and give back to.
"""

from __future__ import annotations

import http.client
import io
import logging
import select
import socket
import ssl
import threading
import typing
from urllib.parse import unquote

from ._bytestream import BUFFER_SIZE, drain
from ._exceptions import TooManyRedirects
from ._urls import ParsedURL, join_url
from ._utils import URLPattern, basic_auth_header, select_proxy

logger = logging.getLogger("httpconn.connection")

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
MAX_REDIRECTS = 20

# Raised when a pooled connection was closed by the server while idle.
STALE_CONNECTION_ERRORS = (
    http.client.RemoteDisconnected,
    BrokenPipeError,
    ConnectionResetError,
    ConnectionAbortedError,
)

PoolKey = typing.Tuple[str, str, int, typing.Optional[str]]
ProxyMap = typing.Sequence[typing.Tuple[URLPattern, typing.Optional[ParsedURL]]]


def _is_connection_dropped(conn: http.client.HTTPConnection) -> bool:
    """
    An idle keep-alive connection has nothing to read. If the socket is
    readable the server either closed it or sent something unsolicited.
    """
    sock = conn.sock
    if sock is None:
        return True
    try:
        readable, _, _ = select.select([sock], [], [], 0)
    except (OSError, ValueError):
        return True
    return bool(readable)


class KeepAliveCache:
    """
    Idle connections, bucketed by origin and proxy, that can carry another
    request. Thread-safe.
    """

    def __init__(self, max_idle_per_origin: int = 5) -> None:
        self._lock = threading.Lock()
        self._idle: dict[PoolKey, list[http.client.HTTPConnection]] = {}
        self._max_idle_per_origin = max_idle_per_origin
        self._closed = False

    def get(self, key: PoolKey) -> http.client.HTTPConnection | None:
        while True:
            with self._lock:
                bucket = self._idle.get(key)
                if not bucket:
                    return None
                conn = bucket.pop()
                if not bucket:
                    del self._idle[key]
            if not _is_connection_dropped(conn):
                return conn
            logger.debug("Discarding dropped keep-alive connection to %s:%d", key[1], key[2])
            conn.close()

    def put(self, key: PoolKey, conn: http.client.HTTPConnection) -> None:
        with self._lock:
            bucket = self._idle.get(key, [])
            if not self._closed and len(bucket) < self._max_idle_per_origin:
                bucket.append(conn)
                self._idle[key] = bucket
                return
        conn.close()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            buckets, self._idle = self._idle, {}
        for bucket in buckets.values():
            for conn in bucket:
                conn.close()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._idle.values())


# ---------------------------------------------------------------------------
# Request body framing
# ---------------------------------------------------------------------------


class _RequestSink(io.RawIOBase):
    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._abandoned = False

    def writable(self) -> bool:
        return True

    def abandon(self) -> None:
        """Close without finishing the framing."""
        self._abandoned = True
        self.close()


class _FixedLengthSink(_RequestSink):
    def __init__(self, sock: socket.socket, length: int) -> None:
        super().__init__(sock)
        self._length = length
        self._remaining = length

    def write(self, data: typing.Any) -> int:
        view = memoryview(data)
        if view.nbytes > self._remaining:
            raise OSError(
                f"too many bytes written: the request declared a length of {self._length}"
            )
        self._sock.sendall(view)
        self._remaining -= view.nbytes
        return view.nbytes

    def close(self) -> None:
        if self.closed:
            return
        try:
            if not self._abandoned and self._remaining:
                raise OSError(
                    f"insufficient data written: {self._length - self._remaining} "
                    f"of {self._length} declared bytes"
                )
        finally:
            super().close()


class _ChunkedSink(_RequestSink):
    def write(self, data: typing.Any) -> int:
        view = memoryview(data)
        if view.nbytes:
            self._sock.sendall(b"".join([b"%X\r\n" % view.nbytes, view, b"\r\n"]))
        return view.nbytes

    def close(self) -> None:
        if self.closed:
            return
        try:
            if not self._abandoned:
                self._sock.sendall(b"0\r\n\r\n")
        finally:
            super().close()


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class Connection:
    """
    A single request/response exchange.

    The underlying ``http.client`` connection is taken from the keep-alive
    cache when one is available for the origin. After the response has
    been read, ``release()`` hands it back, or ``disconnect()`` drops it.

    The proxy is chosen from ``proxy_map`` for the request URL, and chosen
    again for every redirect target.

    Usage::

        connection = Connection("POST", parse_url("http://example.org/"), cache=cache)
        connection.send_request([("Content-Type", "text/plain")], content_length=5)
        with connection.output_stream() as sink:
            sink.write(b"hello")
        raw = connection.get_response()
    """

    def __init__(
        self,
        method: str,
        url: ParsedURL,
        *,
        cache: KeepAliveCache,
        proxy_map: ProxyMap = (),
        ssl_context: ssl.SSLContext | None = None,
        connect_timeout: float | None = 60.0,
        read_timeout: float | None = 60.0,
        follow_redirects: bool = True,
    ) -> None:
        self._method = method.upper()
        self._url = url
        self._cache = cache
        self._proxy_map = proxy_map
        self._proxy = select_proxy(url, proxy_map)
        self._ssl_context = ssl_context
        self._connect_timeout = connect_timeout or None
        self._read_timeout = read_timeout or None
        self._follow_redirects = follow_redirects

        self._conn: http.client.HTTPConnection | None = None
        self._key: PoolKey | None = None
        self._reused = False
        self._headers: list[tuple[str, str]] = []
        self._has_body = False
        self._sink: _RequestSink | None = None
        self._response: http.client.HTTPResponse | None = None

    @property
    def method(self) -> str:
        return self._method

    @property
    def url(self) -> ParsedURL:
        """The URL of the current exchange, after any redirects."""
        return self._url

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # -- opening ---------------------------------------------------------

    def _pool_key(self) -> PoolKey:
        proxy = None if self._proxy is None else self._proxy.netloc
        return (self._url.scheme, self._url.host, self._url.effective_port, proxy)

    def _create(self) -> http.client.HTTPConnection:
        url, proxy = self._url, self._proxy
        host, port = (url.host, url.effective_port) if proxy is None else (
            proxy.host,
            proxy.effective_port,
        )
        conn: http.client.HTTPConnection
        if url.scheme == "https":
            context = self._ssl_context or ssl.create_default_context()
            conn = http.client.HTTPSConnection(
                host, port, timeout=self._connect_timeout, context=context
            )
            if proxy is not None:
                conn.set_tunnel(url.host, url.effective_port, headers=self._proxy_headers())
        else:
            conn = http.client.HTTPConnection(host, port, timeout=self._connect_timeout)
        logger.debug("Connecting to %s:%d", host, port)
        conn.connect()
        return conn

    def _proxy_headers(self) -> dict[str, str]:
        if self._proxy is None or not self._proxy.userinfo:
            return {}
        return {
            "Proxy-Authorization": basic_auth_header(
                unquote(self._proxy.username), unquote(self._proxy.password)
            )
        }

    def _open(self, fresh: bool = False) -> None:
        self._key = self._pool_key()
        conn = None if fresh else self._cache.get(self._key)
        self._reused = conn is not None
        if conn is None:
            conn = self._create()
        else:
            logger.debug("Reusing keep-alive connection to %s", self._url.netloc)
        assert conn.sock is not None
        conn.sock.settimeout(self._read_timeout)
        self._conn = conn

    def _target(self) -> str:
        if self._proxy is not None and self._url.scheme == "http":
            return str(self._url.without_userinfo())
        return self._url.target

    def _write_head(self) -> None:
        conn = self._conn
        assert conn is not None
        names = {name.lower() for name, _ in self._headers}
        conn.putrequest(
            self._method,
            self._target(),
            skip_host="host" in names,
            skip_accept_encoding=True,
        )
        for name, value in self._headers:
            conn.putheader(name, value)
        if self._proxy is not None and self._url.scheme == "http":
            for name, value in self._proxy_headers().items():
                conn.putheader(name, value)
        conn.endheaders()

    def _retry_on_fresh_connection(self, exc: BaseException) -> bool:
        if not self._reused or self._has_body:
            return False
        logger.debug("Keep-alive connection to %s went stale (%r), retrying", self._url.netloc, exc)
        self._drop_connection()
        self._open(fresh=True)
        self._write_head()
        return True

    # -- request -----------------------------------------------------------

    def send_request(
        self,
        headers: typing.Iterable[tuple[str, str]],
        *,
        content_length: int | None = None,
        chunked: bool = False,
    ) -> None:
        """
        Open the connection and send the request line and headers.

        ``content_length`` adds a ``Content-Length`` header and ``chunked``
        a ``Transfer-Encoding: chunked`` one; any body must then be written
        through ``output_stream()``.
        """
        if self._conn is not None:
            raise RuntimeError("The request has already been sent.")
        self._headers = [
            (name, value)
            for name, value in headers
            if name.lower() not in ("content-length", "transfer-encoding")
        ]
        if chunked:
            self._headers.append(("Transfer-Encoding", "chunked"))
        elif content_length is not None:
            self._headers.append(("Content-Length", str(content_length)))
        self._has_body = chunked or bool(content_length)

        logger.debug("%s %s", self._method, self._url.without_userinfo())
        self._open()
        try:
            self._write_head()
        except STALE_CONNECTION_ERRORS as exc:
            if not self._retry_on_fresh_connection(exc):
                raise

        assert self._conn is not None and self._conn.sock is not None
        if chunked:
            self._sink = _ChunkedSink(self._conn.sock)
        elif content_length:
            self._sink = _FixedLengthSink(self._conn.sock, content_length)

    def output_stream(self) -> typing.BinaryIO:
        """
        A buffered sink for the request body. Closing it completes the
        body, and raises ``OSError`` if a declared length was not met.
        """
        if self._sink is None:
            raise RuntimeError("The request does not have a body.")
        return typing.cast(typing.BinaryIO, io.BufferedWriter(self._sink, BUFFER_SIZE))

    # -- response ----------------------------------------------------------

    def get_response(self) -> http.client.HTTPResponse:
        """
        Wait for the response, following redirects if enabled.
        """
        if self._response is not None:
            return self._response
        if self._conn is None:
            raise RuntimeError("The request has not been sent.")

        try:
            response = self._conn.getresponse()
        except STALE_CONNECTION_ERRORS as exc:
            if not self._retry_on_fresh_connection(exc):
                raise
            assert self._conn is not None
            response = self._conn.getresponse()
        self._response = response

        hops = 0
        while self._should_redirect(response):
            if hops >= MAX_REDIRECTS:
                raise TooManyRedirects(f"Exceeded maximum allowed redirects ({MAX_REDIRECTS}).")
            hops += 1
            response = self._redirect(response)
        return response

    def _should_redirect(self, response: http.client.HTTPResponse) -> bool:
        return (
            self._follow_redirects
            and not self._has_body
            and response.status in REDIRECT_STATUS_CODES
            and response.getheader("Location") is not None
        )

    def _redirect(self, response: http.client.HTTPResponse) -> http.client.HTTPResponse:
        location = typing.cast(str, response.getheader("Location"))
        next_url = join_url(self._url, location)
        logger.debug("Redirect %d from %s to %s", response.status, self._url.without_userinfo(), next_url.without_userinfo())

        drain(response)
        response.close()
        self.release()

        if (response.status == 303 and self._method != "HEAD") or (
            response.status in (301, 302) and self._method == "POST"
        ):
            self._method = "GET"
            self._headers = [
                (name, value) for name, value in self._headers if name.lower() != "content-length"
            ]
        if next_url.origin != self._url.origin:
            self._headers = [
                (name, value)
                for name, value in self._headers
                if name.lower() not in ("authorization", "host")
            ]
        self._url = next_url
        self._proxy = select_proxy(next_url, self._proxy_map)
        self._open()
        try:
            self._write_head()
            self._response = self._conn.getresponse()  # type: ignore[union-attr]
        except STALE_CONNECTION_ERRORS as exc:
            if not self._retry_on_fresh_connection(exc):
                raise
            self._response = self._conn.getresponse()  # type: ignore[union-attr]
        return self._response

    # -- teardown ----------------------------------------------------------

    def _drop_connection(self) -> None:
        conn, self._conn = self._conn, None
        self._response = None
        if conn is not None:
            conn.close()

    def release(self) -> None:
        """
        Finish the exchange. The connection goes back to the keep-alive
        cache if the response was read to the end and the server allows
        reuse; otherwise it is closed.
        """
        conn, response = self._conn, self._response
        self._conn = None
        self._response = None
        if conn is None:
            return
        if (
            response is not None
            and response.isclosed()
            and not response.will_close
            and conn.sock is not None
            and self._key is not None
        ):
            logger.debug("Releasing connection to %s for reuse", self._url.netloc)
            self._cache.put(self._key, conn)
        else:
            conn.close()

    def disconnect(self) -> None:
        """
        Close the underlying connection, whatever state it is in.
        """
        if self._sink is not None and not self._sink.closed:
            self._sink.abandon()
        response = self._response
        if response is not None:
            response.close()
        if self._conn is not None:
            logger.debug("Disconnecting from %s", self._url.netloc)
        self._drop_connection()
