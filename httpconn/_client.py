from __future__ import annotations

import dataclasses
import logging
import ssl
import types
import typing

from ._connection import KeepAliveCache
from ._ratelimit import RateLimiter, SimpleRateLimiter
from ._request import HttpRequest, HttpRequestWithBody, _validate_timeout
from ._structures import CaseInsensitiveMap
from ._urls import ParsedURL
from ._utils import basic_auth_header, build_proxy_map, parse_proxy

logger = logging.getLogger("httpconn.client")

RequestT = typing.TypeVar("RequestT", bound=HttpRequest)
Interceptor = typing.Callable[[HttpRequest], None]


@dataclasses.dataclass(frozen=True)
class ClientConfig:
    """
    The defaults an ``HttpClient`` applies to every request it creates.
    Build one with ``HttpClient.builder()``.
    """

    headers: typing.Mapping[str | None, str] = dataclasses.field(
        default_factory=lambda: types.MappingProxyType(
            CaseInsensitiveMap({"Accept-Encoding": "gzip, deflate"})
        )
    )
    connect_timeout: float | None = 60.0
    read_timeout: float | None = 60.0
    follow_redirects: bool = True
    proxy: ParsedURL | None = None
    trust_env: bool = True
    ssl_context: ssl.SSLContext | None = None
    rate_limiter: RateLimiter = dataclasses.field(default_factory=RateLimiter.unlimited)
    interceptors: tuple[Interceptor, ...] = ()
    max_idle_per_origin: int = 5


class HttpClient:
    """
    Creates requests that share a configuration and a keep-alive cache.

    Usage::

        client = HttpClient.builder().set_user_agent("my-app/1.0").build()
        with client.get("https://example.org/").send() as response:
            print(response.body.as_string())

    Clients are safe to share between threads. Close the client to drop its
    idle connections.
    """

    def __init__(self, config: ClientConfig | None = None) -> None:
        self._config = config if config is not None else ClientConfig()
        self._proxy_map = build_proxy_map(self._config.proxy, self._config.trust_env)
        self._keep_alive_cache = KeepAliveCache(self._config.max_idle_per_origin)

    @staticmethod
    def builder() -> HttpClient.Builder:
        return HttpClient.Builder()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def keep_alive_cache(self) -> KeepAliveCache:
        return self._keep_alive_cache

    def _setup(self, request: RequestT) -> RequestT:
        config = self._config
        for name, value in config.headers.items():
            request.set_header(typing.cast(str, name), value)
        request.set_connect_timeout(config.connect_timeout)
        request.set_read_timeout(config.read_timeout)
        request.set_follow_redirects(config.follow_redirects)
        for interceptor in config.interceptors:
            interceptor(request)
        return request

    def _request(self, cls: type[RequestT], method: str, url: str | ParsedURL) -> RequestT:
        request = cls(
            method,
            url,
            cache=self._keep_alive_cache,
            proxy_map=self._proxy_map,
            ssl_context=self._config.ssl_context,
            rate_limiter=self._config.rate_limiter,
        )
        return self._setup(request)

    def get(self, url: str | ParsedURL) -> HttpRequest:
        return self._request(HttpRequest, "GET", url)

    def head(self, url: str | ParsedURL) -> HttpRequest:
        return self._request(HttpRequest, "HEAD", url)

    def options(self, url: str | ParsedURL) -> HttpRequest:
        return self._request(HttpRequest, "OPTIONS", url)

    def trace(self, url: str | ParsedURL) -> HttpRequest:
        return self._request(HttpRequest, "TRACE", url)

    def post(self, url: str | ParsedURL) -> HttpRequestWithBody:
        return self._request(HttpRequestWithBody, "POST", url)

    def put(self, url: str | ParsedURL) -> HttpRequestWithBody:
        return self._request(HttpRequestWithBody, "PUT", url)

    def delete(self, url: str | ParsedURL) -> HttpRequestWithBody:
        return self._request(HttpRequestWithBody, "DELETE", url)

    def close(self) -> None:
        self._keep_alive_cache.close()

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *args: typing.Any) -> None:
        self.close()

    class Builder:
        """
        Collects the configuration of an ``HttpClient``.

        A new builder sends ``Accept-Encoding: gzip, deflate``, uses 60
        second connect and read timeouts, follows redirects and honours the
        ``*_PROXY`` environment variables.
        """

        def __init__(self) -> None:
            self._headers: CaseInsensitiveMap[str] = CaseInsensitiveMap()
            self._connect_timeout: float | None = 60.0
            self._read_timeout: float | None = 60.0
            self._follow_redirects = True
            self._proxy: ParsedURL | None = None
            self._trust_env = True
            self._ssl_context: ssl.SSLContext | None = None
            self._rate_limiter: RateLimiter = RateLimiter.unlimited()
            self._interceptors: list[Interceptor] = []
            self._max_idle_per_origin = 5
            self.set_header("Accept-Encoding", "gzip, deflate")

        def set_header(self, name: str, value: str) -> HttpClient.Builder:
            self._headers[name] = value
            return self

        def set_user_agent(self, user_agent: str) -> HttpClient.Builder:
            return self.set_header("User-Agent", user_agent)

        def set_basic_authentication(self, username: str, password: str) -> HttpClient.Builder:
            return self.set_header("Authorization", basic_auth_header(username, password))

        def set_connect_timeout(self, timeout: float | None) -> HttpClient.Builder:
            self._connect_timeout = _validate_timeout(timeout)
            return self

        def set_read_timeout(self, timeout: float | None) -> HttpClient.Builder:
            self._read_timeout = _validate_timeout(timeout)
            return self

        def set_follow_redirects(self, follow_redirects: bool) -> HttpClient.Builder:
            self._follow_redirects = follow_redirects
            return self

        def set_proxy(self, proxy: str | ParsedURL) -> HttpClient.Builder:
            """
            Send every request through the ``http://`` proxy at ``proxy``.
            Credentials in the URL are sent as ``Proxy-Authorization``.
            """
            self._proxy = parse_proxy(proxy)
            return self

        def trust_env(self, trust_env: bool) -> HttpClient.Builder:
            """
            Whether to read proxy settings from the environment.
            """
            self._trust_env = trust_env
            return self

        def set_ssl_context(self, ssl_context: ssl.SSLContext) -> HttpClient.Builder:
            self._ssl_context = ssl_context
            return self

        def disable_ssl_validation(self) -> HttpClient.Builder:
            """
            Accept any server certificate and host name. Only meant for
            testing against servers with self-signed certificates.
            """
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            logger.warning("TLS certificate validation is disabled")
            return self.set_ssl_context(context)

        def set_rate_limit(self, rate: float) -> HttpClient.Builder:
            """
            Allow at most ``rate`` requests per second.
            """
            return self.set_rate_limiter(SimpleRateLimiter.create(rate))

        def set_rate_limiter(self, rate_limiter: RateLimiter) -> HttpClient.Builder:
            self._rate_limiter = rate_limiter
            return self

        def add_interceptor(self, interceptor: Interceptor) -> HttpClient.Builder:
            """
            Call ``interceptor`` with every request the client creates, after
            the defaults have been applied.
            """
            self._interceptors.append(interceptor)
            return self

        def set_max_idle_connections(self, max_idle_per_origin: int) -> HttpClient.Builder:
            if max_idle_per_origin < 0:
                raise ValueError("max_idle_per_origin < 0")
            self._max_idle_per_origin = max_idle_per_origin
            return self

        def build_config(self) -> ClientConfig:
            return ClientConfig(
                headers=types.MappingProxyType(self._headers.copy()),
                connect_timeout=self._connect_timeout,
                read_timeout=self._read_timeout,
                follow_redirects=self._follow_redirects,
                proxy=self._proxy,
                trust_env=self._trust_env,
                ssl_context=self._ssl_context,
                rate_limiter=self._rate_limiter,
                interceptors=tuple(self._interceptors),
                max_idle_per_origin=self._max_idle_per_origin,
            )

        def build(self) -> HttpClient:
            return HttpClient(self.build_config())
