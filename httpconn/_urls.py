from __future__ import annotations

import ipaddress
import re
import typing
from urllib.parse import urljoin

import idna

from ._exceptions import InvalidURL, UnsupportedProtocol

MAX_URL_LENGTH = 65536

UNRESERVED_CHARACTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
SUB_DELIMS = "!$&'()*+,;="

PERCENT_ENCODED_REGEX = re.compile("%[A-Fa-f0-9]{2}")

_ALWAYS_EXCLUDED = (0x20, 0x22, 0x3C, 0x3E)
_PATH_EXCLUDED = _ALWAYS_EXCLUDED + (0x23, 0x3F, 0x60, 0x7B, 0x7D)
_USERINFO_EXTRA = (0x2F, 0x3B, 0x3D, 0x40, 0x5B, 0x5C, 0x5D, 0x5E, 0x7C)


def _safe_chars(*excluded: int) -> str:
    excluded_set = set(excluded)
    return "".join(chr(i) for i in range(0x20, 0x7F) if i not in excluded_set)


QUERY_SAFE = _safe_chars(*_ALWAYS_EXCLUDED, 0x23)
PATH_SAFE = _safe_chars(*_PATH_EXCLUDED)
USERINFO_SAFE = _safe_chars(*_PATH_EXCLUDED, *_USERINFO_EXTRA)

URL_REGEX = re.compile(
    r"(?:(?P<scheme>([a-zA-Z][a-zA-Z0-9+.-]*)?):)?"
    r"(?://(?P<authority>[^/?#]*))?"
    r"(?P<path>[^?#]*)"
    r"(?:\?(?P<query>[^#]*))?"
    r"(?:#(?P<fragment>.*))?"
)

AUTHORITY_REGEX = re.compile(
    r"(?:(?P<userinfo>.*)@)?(?P<host>(\[.*\]|[^:@]*)):?(?P<port>.*)?"
)

IPv4_STYLE_HOSTNAME = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+$")
IPv6_STYLE_HOSTNAME = re.compile(r"^\[.*\]$")

DEFAULT_PORTS = {"http": 80, "https": 443}


class ParsedURL(typing.NamedTuple):
    """
    An absolute ``http`` or ``https`` URL, split into its components.

    ``port`` is ``None`` when the URL uses the default port of its scheme.
    The fragment is kept for display only and is never sent.
    """

    scheme: str
    userinfo: str
    host: str
    port: int | None
    path: str
    query: str | None
    fragment: str | None

    @property
    def effective_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORTS[self.scheme]

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return host + (f":{self.port}" if self.port is not None else "")

    @property
    def origin(self) -> tuple[str, str, int]:
        """
        The ``(scheme, host, port)`` triple identifying the server.
        """
        return (self.scheme, self.host, self.effective_port)

    @property
    def target(self) -> str:
        """
        The origin-form request target, ``path?query``.
        """
        path = self.path or "/"
        return path if self.query is None else f"{path}?{self.query}"

    @property
    def username(self) -> str:
        return self.userinfo.partition(":")[0]

    @property
    def password(self) -> str:
        return self.userinfo.partition(":")[2]

    def without_userinfo(self) -> ParsedURL:
        return self._replace(userinfo="", fragment=None)

    def __str__(self) -> str:
        authority = (f"{self.userinfo}@" if self.userinfo else "") + self.netloc
        return "".join([
            f"{self.scheme}://{authority}",
            self.path,
            f"?{self.query}" if self.query is not None else "",
            f"#{self.fragment}" if self.fragment is not None else "",
        ])


def _validate_non_printable(value: str, label: str) -> None:
    if any(char.isascii() and not char.isprintable() for char in value):
        char = next(c for c in value if c.isascii() and not c.isprintable())
        raise InvalidURL(f"Invalid non-printable ASCII character in {label}, {char!r} at position {value.find(char)}.")


def parse_url(url: str | ParsedURL) -> ParsedURL:
    """
    Parse an absolute ``http`` or ``https`` URL.

    Raises ``InvalidURL`` for malformed input and ``UnsupportedProtocol``
    for any other scheme.
    """
    if isinstance(url, ParsedURL):
        return url
    if len(url) > MAX_URL_LENGTH:
        raise InvalidURL("URL too long")

    _validate_non_printable(url, "URL")

    url_dict = URL_REGEX.match(url).groupdict()  # type: ignore[union-attr]

    scheme = (url_dict["scheme"] or "").lower()
    authority = url_dict["authority"] or ""
    if not scheme:
        raise UnsupportedProtocol(f"Request URL is missing an 'http://' or 'https://' protocol: {url!r}")
    if scheme not in DEFAULT_PORTS:
        raise UnsupportedProtocol(f"Request URL has an unsupported protocol '{scheme}://': {url!r}")

    authority_dict = AUTHORITY_REGEX.match(authority).groupdict()  # type: ignore[union-attr]

    host = encode_host(authority_dict["host"] or "")
    if not host:
        raise InvalidURL(f"Request URL is missing a host: {url!r}")

    path = url_dict["path"] or ""
    validate_path(path)
    query = url_dict["query"]
    fragment = url_dict["fragment"]

    return ParsedURL(
        scheme,
        quote(authority_dict["userinfo"] or "", safe=USERINFO_SAFE),
        host,
        normalize_port(authority_dict["port"], scheme),
        quote(normalize_path(path), safe=PATH_SAFE),
        None if query is None else quote(query, safe=QUERY_SAFE),
        fragment,
    )


def join_url(base: ParsedURL, location: str) -> ParsedURL:
    """
    Resolve a ``Location`` header value against the URL it was received
    from.
    """
    return parse_url(urljoin(str(base.without_userinfo()), location.strip()))


def encode_host(host: str) -> str:
    if not host:
        return ""

    if IPv4_STYLE_HOSTNAME.match(host):
        try:
            ipaddress.IPv4Address(host)
        except ipaddress.AddressValueError:
            raise InvalidURL(f"Invalid IPv4 address: {host!r}")
        return host

    if IPv6_STYLE_HOSTNAME.match(host):
        try:
            ipaddress.IPv6Address(host[1:-1])
        except ipaddress.AddressValueError:
            raise InvalidURL(f"Invalid IPv6 address: {host!r}")
        return host[1:-1]

    if host.isascii():
        WHATWG_SAFE = '"`{}%|\\'
        return quote(host.lower(), safe=SUB_DELIMS + WHATWG_SAFE)

    try:
        return idna.encode(host.lower()).decode("ascii")
    except idna.IDNAError:
        raise InvalidURL(f"Invalid IDNA hostname: {host!r}")


def normalize_port(port: str | int | None, scheme: str) -> int | None:
    if not port and port != 0:
        return None
    try:
        port_as_int = int(port)  # type: ignore[arg-type]
    except ValueError:
        raise InvalidURL(f"Invalid port: {port!r}")
    if not 0 <= port_as_int <= 65535:
        raise InvalidURL(f"Invalid port: {port!r}")
    return None if port_as_int == DEFAULT_PORTS.get(scheme) else port_as_int


def validate_path(path: str) -> None:
    if path and not path.startswith("/"):
        raise InvalidURL("For absolute URLs, path must be empty or begin with '/'")


def normalize_path(path: str) -> str:
    if "." not in path:
        return path
    components = path.split("/")
    if "." not in components and ".." not in components:
        return path
    output: list[str] = []
    for component in components:
        if component == "..":
            if output and output != [""]:
                output.pop()
        elif component != ".":
            output.append(component)
    return "/".join(output)


def _percent_encode(string: str) -> str:
    return "".join(f"%{byte:02X}" for byte in string.encode("utf-8"))


def percent_encoded(string: str, safe: str) -> str:
    non_escaped = UNRESERVED_CHARACTERS + safe
    if not string.rstrip(non_escaped):
        return string
    return "".join(c if c in non_escaped else _percent_encode(c) for c in string)


def quote(string: str, safe: str) -> str:
    parts: list[str] = []
    pos = 0
    for match in re.finditer(PERCENT_ENCODED_REGEX, string):
        start, end = match.start(), match.end()
        if start != pos:
            parts.append(percent_encoded(string[pos:start], safe=safe))
        parts.append(match.group(0))
        pos = end
    if pos != len(string):
        parts.append(percent_encoded(string[pos:], safe=safe))
    return "".join(parts)


def form_encode(string: str) -> str:
    """
    Encode ``string`` for ``application/x-www-form-urlencoded`` content.
    Spaces become ``+``; every other reserved character is percent-encoded.
    """
    return "+".join(percent_encoded(part, safe="*") for part in string.split(" "))
