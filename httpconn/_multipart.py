from __future__ import annotations

import re
import typing
import uuid

from ._bytestream import flush
from ._content import ByteArrayBody, RequestBody
from ._structures import CaseInsensitiveMap

if typing.TYPE_CHECKING:
    from ._bytestream import Writable

# RFC 2046 section 5.1.1
BOUNDARY_REGEX = re.compile(r"[0-9A-Za-z'()+_,\-./:=? ]{0,69}[0-9A-Za-z'()+_,\-./:=?]")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


class Part:
    """
    One body part of a multipart payload.

    The ``Content-Encoding``, ``Content-Length`` and ``Content-Type``
    headers are filled in from the body when it reports them, and every
    part declares ``Content-Transfer-Encoding: binary``.
    """

    def __init__(self, body: RequestBody) -> None:
        self._body = body
        self._headers: CaseInsensitiveMap[str] = CaseInsensitiveMap()
        if body.content_encoding is not None:
            self._headers["Content-Encoding"] = body.content_encoding
        if body.length >= 0:
            self._headers["Content-Length"] = str(body.length)
        if body.content_type is not None:
            self._headers["Content-Type"] = body.content_type
        self._headers["Content-Transfer-Encoding"] = "binary"

    @property
    def body(self) -> RequestBody:
        return self._body

    @property
    def headers(self) -> typing.Mapping[str | None, str]:
        return self._headers.copy()

    def set_header(self, name: str, value: str) -> Part:
        self._headers[name] = value
        return self


class _Builder:
    def __init__(self, subtype: str) -> None:
        self._subtype = subtype
        self._parts: list[Part] = []
        self._boundary = "__END_OF_PART__" + str(uuid.uuid4())

    def boundary(self, boundary: str) -> typing.Self:
        """
        Replace the generated boundary.
        """
        if not BOUNDARY_REGEX.fullmatch(boundary):
            raise ValueError(f"Invalid multipart boundary: {boundary!r}")
        self._boundary = boundary
        return self

    def _add(self, part: Part) -> typing.Self:
        self._parts.append(part)
        return self

    def build(self) -> MultipartBody:
        if not self._parts:
            raise ValueError(
                f"multipart/{self._subtype} content must have at least one body part"
            )
        return MultipartBody(list(self._parts), self._subtype, self._boundary)


class MixedBuilder(_Builder):
    """
    Builds ``multipart/mixed`` content.
    """

    def __init__(self) -> None:
        super().__init__("mixed")

    def part(self, part: Part | RequestBody) -> MixedBuilder:
        if isinstance(part, RequestBody):
            part = Part(part)
        return self._add(part)


class FormDataBuilder(_Builder):
    """
    Builds ``multipart/form-data`` content out of named fields and files.
    """

    def __init__(self) -> None:
        super().__init__("form-data")

    def field(self, name: str, value: RequestBody | str) -> FormDataBuilder:
        if isinstance(value, str):
            value = ByteArrayBody.encode(value).set_content_type('text/plain; charset="UTF-8"')
        part = Part(value).set_header(
            "Content-Disposition", f'form-data; name="{_unquote(name)}"'
        )
        return self._add(part)

    def file(self, name: str, filename: str, body: RequestBody) -> FormDataBuilder:
        part = Part(body).set_header(
            "Content-Disposition",
            f'form-data; name="{_unquote(name)}"; filename="{filename}"',
        )
        return self._add(part)


class MultipartBody(RequestBody):
    """
    A multipart payload.

    Multipart bodies are written part by part straight into the request and
    cannot be read back through ``input_stream()``; their length is
    unknown. The boundary is not checked against the content of the parts,
    so a part that contains the boundary corrupts the payload.

    Usage::

        body = (
            MultipartBody.form_data()
            .field("title", "Holiday")
            .file("photo", "beach.jpg", FileBody("beach.jpg"))
            .build()
        )
    """

    def __init__(self, parts: typing.Sequence[Part], subtype: str, boundary: str) -> None:
        self._parts = tuple(parts)
        self._boundary = boundary
        self._content_type = f'multipart/{subtype}; boundary="{boundary}"'

    @staticmethod
    def mixed() -> MixedBuilder:
        return MixedBuilder()

    @staticmethod
    def form_data() -> FormDataBuilder:
        return FormDataBuilder()

    @property
    def boundary(self) -> str:
        return self._boundary

    @property
    def parts(self) -> tuple[Part, ...]:
        return self._parts

    @property
    def content_type(self) -> str:
        return self._content_type

    def input_stream(self) -> typing.BinaryIO:
        raise NotImplementedError("multipart bodies can only be written")

    def write(self, sink: Writable) -> None:
        for part in self._parts:
            lines = [f"--{self._boundary}\r\n"]
            lines.extend(f"{name}: {value}\r\n" for name, value in part.headers.items())
            lines.append("\r\n")
            sink.write("".join(lines).encode("latin-1"))
            part.body.write(sink)
            sink.write(b"\r\n")
        sink.write(f"--{self._boundary}--\r\n".encode("latin-1"))
        flush(sink)
