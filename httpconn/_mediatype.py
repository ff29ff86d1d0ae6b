from __future__ import annotations

import codecs
import re
import types
import typing

from ._exceptions import InvalidMediaType

# US-ASCII without controls, space and the RFC 2045 tspecials ()<>@,;:\"/[]?=
TOKEN = r"[!#$%&'*+.^_`|~0-9A-Za-z{}-]+"
QUOTED = r'"[^"\r\n]*"'

TOKEN_REGEX = re.compile(TOKEN)
TYPE_REGEX = re.compile(rf"(?P<type>{TOKEN})/(?P<subtype>{TOKEN})")
# The longest prefix of a type/subtype, to report where a mismatch starts
TYPE_PREFIX_REGEX = re.compile(rf"(?:{TOKEN}(?:/(?:{TOKEN})?)?)?")
PARAMETER_REGEX = re.compile(
    rf"\s*;\s*(?P<name>{TOKEN})=(?P<value>{TOKEN}|{QUOTED})\s*", re.ASCII
)
CHARSET_NAME_REGEX = re.compile(r"[A-Za-z0-9][A-Za-z0-9\-+:_.]*")


def _resolve_charset(value: str) -> str | None:
    if not CHARSET_NAME_REGEX.fullmatch(value):
        return None
    try:
        info = codecs.lookup(value)
    except LookupError:
        return None
    # bytes-to-bytes codecs such as "base64" or "zlib" are not charsets
    if not getattr(info, "_is_text_encoding", True):
        return None
    return value.lower()


class MediaType:
    """
    A parsed ``type/subtype; name=value`` media type, as found in
    ``Content-Type`` headers.

    The type, subtype and parameter names are lowercased. Parameter values
    are kept as sent, minus the surrounding quotes of quoted values. The
    ``charset`` parameter is additionally resolved: ``charset`` holds its
    lowercased name when Python has a codec for it, and is ``None``
    otherwise while ``parameters["charset"]`` still carries the raw value.

    >>> media_type = MediaType.parse('Text/HTML; Charset="UTF-8"')
    >>> media_type.mime_type, media_type.charset
    ('text/html', 'utf-8')
    >>> str(media_type)
    'text/html; charset=utf-8'
    """

    def __init__(
        self,
        type: str,
        subtype: str,
        parameters: typing.Mapping[str, str] | None = None,
        charset: str | None = None,
    ) -> None:
        self._type = type
        self._subtype = subtype
        self._parameters = types.MappingProxyType(dict(parameters or {}))
        self._charset = charset

    @classmethod
    def parse(cls, text: str) -> MediaType:
        """
        Parse ``text``, raising ``InvalidMediaType`` if it is malformed.
        """
        match = TYPE_REGEX.match(text)
        if match is None:
            index = TYPE_PREFIX_REGEX.match(text).end()  # type: ignore[union-attr]
            raise InvalidMediaType(
                f"Content-Type does not match 'type/subtype; parameter=value' format: "
                f"{text[index:]!r} at index {index}"
            )

        type_, subtype = match.group("type"), match.group("subtype")
        if type_ == "*" and subtype != "*":
            raise InvalidMediaType("cannot have a declared subtype with a wildcard type")

        parameters: dict[str, str] = {}
        charset: str | None = None
        index = match.end()
        while index < len(text):
            parameter = PARAMETER_REGEX.match(text, index)
            if parameter is None:
                raise InvalidMediaType(
                    f"parameter does not match '; parameter=value' format: "
                    f"{text[index:]!r} at index {index}"
                )
            name = parameter.group("name").lower()
            value = parameter.group("value")
            if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
                value = value[1:-1]
            if name == "charset":
                charset = _resolve_charset(value)
                if charset is not None:
                    value = charset
            parameters[name] = value
            index = parameter.end()

        return cls(type_.lower(), subtype.lower(), parameters, charset)

    @classmethod
    def try_parse(cls, text: str | None) -> MediaType | None:
        """
        Like ``parse()``, but returns ``None`` instead of raising.
        """
        if text is None:
            return None
        try:
            return cls.parse(text)
        except InvalidMediaType:
            return None

    @property
    def type(self) -> str:
        return self._type

    @property
    def subtype(self) -> str:
        return self._subtype

    @property
    def mime_type(self) -> str:
        return f"{self._type}/{self._subtype}"

    @property
    def charset(self) -> str | None:
        return self._charset

    @property
    def parameters(self) -> typing.Mapping[str, str]:
        return self._parameters

    def parameter(self, name: str) -> str | None:
        return self._parameters.get(name.lower())

    def __str__(self) -> str:
        parts = [self.mime_type]
        for name, value in self._parameters.items():
            if not TOKEN_REGEX.fullmatch(value):
                value = f'"{value}"'
            parts.append(f"{name}={value}")
        return "; ".join(parts)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self)!r})"

    def __eq__(self, other: typing.Any) -> bool:
        if not isinstance(other, MediaType):
            return NotImplemented
        return (
            self._type == other._type
            and self._subtype == other._subtype
            and dict(self._parameters) == dict(other._parameters)
        )

    def __hash__(self) -> int:
        return hash((self._type, self._subtype, frozenset(self._parameters.items())))
