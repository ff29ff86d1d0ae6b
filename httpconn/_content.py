from __future__ import annotations

import io
import mimetypes
import os
import typing

from ._bytestream import copy, flush
from ._urls import form_encode

if typing.TYPE_CHECKING:
    from ._bytestream import Writable


class RequestBody:
    """
    The payload of a request.

    Subclasses provide the bytes either through ``input_stream()``, a binary
    file-like object over the payload, or by overriding ``write()`` to emit
    the payload straight into the request. ``content_type``,
    ``content_encoding`` and ``length`` describe the payload when known;
    ``length`` is ``-1`` when the size cannot be told in advance.

    Unless a subclass documents otherwise, a body may only be consumed once.
    """

    @property
    def content_type(self) -> str | None:
        return None

    @property
    def content_encoding(self) -> str | None:
        return None

    @property
    def length(self) -> int:
        return -1

    def input_stream(self) -> typing.BinaryIO:
        raise NotImplementedError(
            f"{type(self).__name__} does not support input_stream()"
        )

    def write(self, sink: Writable) -> None:
        """
        Write the payload to ``sink`` and flush it.

        The default copies ``input_stream()`` in 8 KiB chunks and closes
        that stream afterwards. ``sink`` is left open.
        """
        stream = self.input_stream()
        try:
            copy(stream, sink)
        finally:
            stream.close()
        flush(sink)


class ByteArrayBody(RequestBody):
    """
    A repeatable body over an in-memory byte buffer, or a slice of one.
    """

    def __init__(self, data: bytes, offset: int = 0, length: int | None = None) -> None:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Expected bytes, got {type(data).__name__}")
        if length is None:
            length = len(data) - offset
        if offset < 0:
            raise ValueError("offset < 0")
        if length < 0:
            raise ValueError("length < 0")
        if offset + length > len(data):
            raise ValueError("offset + length > len(data)")
        self._data = bytes(data)
        self._offset = offset
        self._length = length
        self._content_type: str | None = None

    @classmethod
    def encode(cls, text: str, charset: str = "utf-8") -> ByteArrayBody:
        return cls(text.encode(charset))

    @property
    def length(self) -> int:
        return self._length

    @property
    def content_type(self) -> str | None:
        return self._content_type

    def set_content_type(self, content_type: str) -> ByteArrayBody:
        self._content_type = content_type
        return self

    def input_stream(self) -> typing.BinaryIO:
        return io.BytesIO(self._view())

    def write(self, sink: Writable) -> None:
        sink.write(self._view())
        flush(sink)

    def _view(self) -> memoryview:
        return memoryview(self._data)[self._offset : self._offset + self._length]


class FileBody(RequestBody):
    """
    A body read from a regular file.

    Every call to ``input_stream()`` opens the file anew, so the body can be
    sent more than once. The content type is guessed from the file name.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        path = os.fspath(path)
        if not os.path.isfile(path):
            raise ValueError(f"{path} is not a regular file or does not exist")
        self._path = path
        self._size = os.path.getsize(path)
        self._content_type, _ = mimetypes.guess_type(path, strict=False)
        self._content_encoding: str | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def filename(self) -> str:
        return os.path.basename(self._path)

    @property
    def length(self) -> int:
        return self._size

    @property
    def content_type(self) -> str | None:
        return self._content_type

    @property
    def content_encoding(self) -> str | None:
        return self._content_encoding

    def set_content_type(self, content_type: str) -> FileBody:
        self._content_type = content_type
        return self

    def set_content_encoding(self, content_encoding: str) -> FileBody:
        self._content_encoding = content_encoding
        return self

    def input_stream(self) -> typing.BinaryIO:
        return open(self._path, "rb")


class FormBuilder:
    """
    Builds an ``application/x-www-form-urlencoded`` body.

    >>> FormBuilder().encode("q", "fish & chips").add("page", "2").build().length
    23
    """

    def __init__(self) -> None:
        self._pairs: list[str] = []

    def add(self, name: str, value: str) -> FormBuilder:
        """
        Append a pair whose name and value are already encoded.
        """
        self._pairs.append(f"{name}={value}")
        return self

    def encode(self, name: str, value: str) -> FormBuilder:
        """
        Append a pair, percent-encoding the name and value.
        """
        self._pairs.append(f"{form_encode(name)}={form_encode(value)}")
        return self

    def __str__(self) -> str:
        return "&".join(self._pairs)

    def build(self) -> ByteArrayBody:
        return ByteArrayBody.encode(str(self)).set_content_type(
            "application/x-www-form-urlencoded"
        )
