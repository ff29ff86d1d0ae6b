from __future__ import annotations

import base64
import ipaddress
import re
import typing
from urllib.request import getproxies

from ._exceptions import UnsupportedProtocol
from ._urls import AUTHORITY_REGEX, URL_REGEX, ParsedURL, parse_url


def get_environment_proxies() -> dict[str, str | None]:
    """
    Read proxy settings from the ``*_PROXY`` and ``NO_PROXY`` environment
    variables, keyed by URL pattern. A ``None`` value means "no proxy".
    """
    proxy_info = getproxies()
    mounts: dict[str, str | None] = {}

    for scheme in ("http", "https", "all"):
        if proxy_info.get(scheme):
            hostname = proxy_info[scheme]
            mounts[f"{scheme}://"] = (
                hostname if "://" in hostname else f"http://{hostname}"
            )

    no_proxy_hosts = [host.strip() for host in proxy_info.get("no", "").split(",")]
    for hostname in no_proxy_hosts:
        if hostname == "*":
            return {}
        elif hostname:
            if "://" in hostname:
                mounts[hostname] = None
            elif _is_ip_hostname(hostname, ipaddress.IPv4Address):
                mounts[f"all://{hostname}"] = None
            elif _is_ip_hostname(hostname, ipaddress.IPv6Address):
                mounts[f"all://[{hostname}]"] = None
            elif hostname.lower() == "localhost":
                mounts[f"all://{hostname}"] = None
            else:
                mounts[f"all://*{hostname}"] = None

    return mounts


def _is_ip_hostname(
    hostname: str,
    address_class: type[ipaddress.IPv4Address] | type[ipaddress.IPv6Address],
) -> bool:
    try:
        address_class(hostname.split("/")[0])
    except ValueError:
        return False
    return True


class URLPattern:
    """
    A URL pattern such as ``"all://"``, ``"https://"``,
    ``"all://*example.com"`` or ``"http://localhost:8080"``, used to decide
    which proxy applies to a request.
    """

    def __init__(self, pattern: str) -> None:
        if pattern and ":" not in pattern:
            raise ValueError(
                f"Proxy keys should use proper URL forms rather "
                f"than plain scheme strings. "
                f'Instead of "{pattern}", use "{pattern}://"'
            )

        url_dict = URL_REGEX.match(pattern).groupdict()  # type: ignore[union-attr]
        authority = AUTHORITY_REGEX.match(url_dict["authority"] or "").groupdict()  # type: ignore[union-attr]
        scheme = (url_dict["scheme"] or "").lower()
        host = (authority["host"] or "").lower()
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]

        self.pattern = pattern
        self.scheme = "" if scheme == "all" else scheme
        self.host = "" if host == "*" else host
        self.port = int(authority["port"]) if authority["port"] else None
        if not self.host:
            self.host_regex: typing.Pattern[str] | None = None
        elif self.host.startswith("*."):
            domain = re.escape(self.host[2:])
            self.host_regex = re.compile(f"^.+\\.{domain}$")
        elif self.host.startswith("*"):
            domain = re.escape(self.host[1:])
            self.host_regex = re.compile(f"^(.+\\.)?{domain}$")
        else:
            domain = re.escape(self.host)
            self.host_regex = re.compile(f"^{domain}$")

    def matches(self, other: ParsedURL) -> bool:
        if self.scheme and self.scheme != other.scheme:
            return False
        if (
            self.host
            and self.host_regex is not None
            and not self.host_regex.match(other.host)
        ):
            return False
        if self.port is not None and self.port != other.effective_port:
            return False
        return True

    @property
    def priority(self) -> tuple[int, int, int]:
        port_priority = 0 if self.port is not None else 1
        host_priority = -len(self.host)
        scheme_priority = -len(self.scheme)
        return (port_priority, host_priority, scheme_priority)

    def __hash__(self) -> int:
        return hash(self.pattern)

    def __lt__(self, other: URLPattern) -> bool:
        return self.priority < other.priority

    def __eq__(self, other: typing.Any) -> bool:
        return isinstance(other, URLPattern) and self.pattern == other.pattern

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.pattern!r})"


def parse_proxy(proxy: str | ParsedURL) -> ParsedURL:
    url = parse_url(proxy)
    if url.scheme != "http":
        raise UnsupportedProtocol(
            f"Only 'http://' proxies are supported, got {str(url.without_userinfo())!r}"
        )
    return url


def build_proxy_map(
    proxy: str | ParsedURL | None, trust_env: bool
) -> list[tuple[URLPattern, ParsedURL | None]]:
    """
    Return ``(pattern, proxy)`` pairs, most specific pattern first. An
    explicit ``proxy`` applies to every request and overrides the
    environment.
    """
    if proxy is not None:
        return [(URLPattern("all://"), parse_proxy(proxy))]
    if not trust_env:
        return []
    mounts = {
        URLPattern(pattern): None if value is None else parse_proxy(value)
        for pattern, value in get_environment_proxies().items()
    }
    return sorted(mounts.items(), key=lambda item: item[0])


def select_proxy(
    url: ParsedURL, proxy_map: typing.Iterable[tuple[URLPattern, ParsedURL | None]]
) -> ParsedURL | None:
    for pattern, proxy in proxy_map:
        if pattern.matches(url):
            return proxy
    return None


def basic_auth_header(username: str, password: str) -> str:
    credentials = f"{username}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")
