from __future__ import annotations

import datetime
import email.utils
import logging
import ssl
import types
import typing

from ._connection import Connection, KeepAliveCache, ProxyMap
from ._ratelimit import RateLimiter
from ._response import HttpResponse
from ._structures import CaseInsensitiveMap
from ._urls import ParsedURL, parse_url
from ._utils import basic_auth_header

if typing.TYPE_CHECKING:
    from ._content import RequestBody

logger = logging.getLogger("httpconn.request")


def _validate_timeout(timeout: float | None) -> float | None:
    if timeout is not None and timeout < 0:
        raise ValueError(f"timeout must be non-negative, got {timeout}")
    return timeout


class HttpRequest:
    """
    A request without a payload (``GET``, ``HEAD``, ``OPTIONS``, ``TRACE``).

    Requests are normally created through an ``HttpClient``, which fills in
    its defaults. Setters return the request so calls can be chained::

        response = client.get(url).set_header("Accept", "application/json").send()

    Timeouts are in seconds; ``None`` or ``0`` means no timeout.
    """

    def __init__(
        self,
        method: str,
        url: str | ParsedURL,
        *,
        cache: KeepAliveCache | None = None,
        proxy_map: ProxyMap = (),
        ssl_context: ssl.SSLContext | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._method = method.upper()
        self._url = parse_url(url)
        self._cache = cache if cache is not None else KeepAliveCache(max_idle_per_origin=0)
        self._proxy_map = proxy_map
        self._ssl_context = ssl_context
        self._rate_limiter = rate_limiter or RateLimiter.unlimited()
        self._headers: CaseInsensitiveMap[str] = CaseInsensitiveMap()
        self._connect_timeout: float | None = 60.0
        self._read_timeout: float | None = 60.0
        self._follow_redirects = True

    @property
    def method(self) -> str:
        return self._method

    @property
    def url(self) -> str:
        return str(self._url)

    @property
    def headers(self) -> typing.Mapping[str | None, str]:
        """A read-only snapshot of the request headers."""
        return types.MappingProxyType(self._headers.copy())

    def header(self, name: str) -> str | None:
        return self._headers.get(name)

    def set_header(self, name: str, value: str) -> typing.Self:
        self._headers[name] = value
        return self

    def _set_if_not_set(self, name: str, value: str) -> None:
        if name not in self._headers:
            self._headers[name] = value

    @property
    def user_agent(self) -> str | None:
        return self.header("User-Agent")

    def set_user_agent(self, user_agent: str) -> typing.Self:
        return self.set_header("User-Agent", user_agent)

    def set_basic_authentication(self, username: str, password: str) -> typing.Self:
        return self.set_header("Authorization", basic_auth_header(username, password))

    @property
    def connect_timeout(self) -> float | None:
        return self._connect_timeout

    def set_connect_timeout(self, timeout: float | None) -> typing.Self:
        self._connect_timeout = _validate_timeout(timeout)
        return self

    @property
    def read_timeout(self) -> float | None:
        return self._read_timeout

    def set_read_timeout(self, timeout: float | None) -> typing.Self:
        self._read_timeout = _validate_timeout(timeout)
        return self

    @property
    def follow_redirects(self) -> bool:
        return self._follow_redirects

    def set_follow_redirects(self, follow_redirects: bool) -> typing.Self:
        self._follow_redirects = follow_redirects
        return self

    @property
    def if_modified_since(self) -> datetime.datetime | None:
        value = self.header("If-Modified-Since")
        if value is None:
            return None
        try:
            return email.utils.parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None

    def set_if_modified_since(self, moment: datetime.datetime) -> typing.Self:
        if moment.tzinfo is None:
            raise ValueError("if_modified_since must be timezone-aware")
        moment = moment.astimezone(datetime.timezone.utc)
        return self.set_header("If-Modified-Since", email.utils.format_datetime(moment, usegmt=True))

    def _connection(self) -> Connection:
        return Connection(
            self._method,
            self._url,
            cache=self._cache,
            proxy_map=self._proxy_map,
            ssl_context=self._ssl_context,
            connect_timeout=self._connect_timeout,
            read_timeout=self._read_timeout,
            follow_redirects=self._follow_redirects,
        )

    def _transmit(self, connection: Connection) -> None:
        connection.send_request(self._headers.items())  # type: ignore[arg-type]

    def send(self) -> HttpResponse:
        """
        Send the request and return the response.

        Raises ``HttpResponseError`` for a status outside of the 2xx range.
        On any failure the connection is dropped before the error
        propagates.
        """
        connection = self._connection()
        try:
            self._rate_limiter.acquire()
            self._transmit(connection)
            return HttpResponse(connection)
        except BaseException:
            connection.disconnect()
            raise

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self._method!r}, {str(self._url.without_userinfo())!r})>"


class HttpRequestWithBody(HttpRequest):
    """
    A request that can carry a payload (``POST``, ``PUT``, ``DELETE``).

    When sent, the body's content encoding and type become the
    ``Content-Encoding`` and ``Content-Type`` headers unless those were set
    explicitly. The payload is framed with ``Content-Length`` when its
    length is known, and chunked otherwise. A request without a body is
    sent with ``Content-Length: 0``.
    """

    def __init__(self, method: str, url: str | ParsedURL, **kwargs: typing.Any) -> None:
        super().__init__(method, url, **kwargs)
        self._body: RequestBody | None = None
        self._content_length = -1

    @property
    def body(self) -> RequestBody | None:
        return self._body

    def set_body(self, body: RequestBody) -> HttpRequestWithBody:
        self._body = body
        return self

    @property
    def content_type(self) -> str | None:
        return self.header("Content-Type")

    def set_content_type(self, content_type: str) -> HttpRequestWithBody:
        return self.set_header("Content-Type", content_type)

    @property
    def content_encoding(self) -> str | None:
        return self.header("Content-Encoding")

    def set_content_encoding(self, content_encoding: str) -> HttpRequestWithBody:
        return self.set_header("Content-Encoding", content_encoding)

    @property
    def content_length(self) -> int:
        return self._content_length

    def set_content_length(self, length: int) -> HttpRequestWithBody:
        """
        Declare the payload length, overriding the length the body reports.
        """
        if length < 0:
            raise ValueError("length < 0")
        self._content_length = length
        return self

    def _transmit(self, connection: Connection) -> None:
        body = self._body
        if body is None:
            connection.send_request(self._headers.items(), content_length=0)  # type: ignore[arg-type]
            return

        if body.content_encoding is not None:
            self._set_if_not_set("Content-Encoding", body.content_encoding)
        if body.content_type is not None:
            self._set_if_not_set("Content-Type", body.content_type)

        length = self._content_length if self._content_length >= 0 else body.length
        if length >= 0:
            connection.send_request(self._headers.items(), content_length=length)  # type: ignore[arg-type]
        else:
            connection.send_request(self._headers.items(), chunked=True)  # type: ignore[arg-type]

        if length != 0:
            logger.debug("Writing %s request body", "chunked" if length < 0 else f"{length} byte")
            sink = connection.output_stream()
            body.write(sink)
            sink.close()
