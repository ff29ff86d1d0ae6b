from __future__ import annotations

import gzip
import io
import typing

from ._bytestream import flush
from ._content import RequestBody

if typing.TYPE_CHECKING:
    from ._bytestream import Writable


class _Compressor:
    """
    Feeds a body into a gzip stream. ``flush()`` only flushes the
    destination, so a body flushing its sink does not emit sync markers.
    """

    def __init__(self, sink: Writable) -> None:
        self._sink = sink
        self._gzip = gzip.GzipFile(filename="", mode="wb", fileobj=sink, mtime=0)  # type: ignore[arg-type]

    def write(self, data: bytes) -> int:
        return self._gzip.write(data)

    def flush(self) -> None:
        flush(self._sink)

    def finish(self) -> None:
        self._gzip.close()
        flush(self._sink)


def _compress(body: RequestBody) -> bytes:
    buffer = io.BytesIO()
    compressor = _Compressor(buffer)
    body.write(compressor)
    compressor.finish()
    return buffer.getvalue()


class GZipEncoding(RequestBody):
    """
    Compresses another body with gzip.

    ``GZipEncoding.encode(body)`` compresses immediately and keeps the
    result in memory: ``length`` is the compressed size and the body can be
    sent any number of times.

    ``GZipEncoding.stream(body)`` defers the work. Until it is materialized,
    ``length`` is ``-1`` and ``write()`` compresses straight into the
    request without buffering. Calling ``materialize()``, or
    ``input_stream()`` which materializes as a side effect, buffers the
    compressed bytes and from then on ``length`` reports their size.

    ``content_encoding`` is always ``"gzip"``; ``content_type`` is the
    wrapped body's.
    """

    def __init__(self, body: RequestBody, *, buffered: bool = True) -> None:
        self._body = body
        self._buffer: bytes | None = None
        if buffered:
            self.materialize()

    @classmethod
    def encode(cls, body: RequestBody) -> GZipEncoding:
        return cls(body, buffered=True)

    @classmethod
    def stream(cls, body: RequestBody) -> GZipEncoding:
        return cls(body, buffered=False)

    @property
    def body(self) -> RequestBody:
        return self._body

    @property
    def materialized(self) -> bool:
        return self._buffer is not None

    def materialize(self) -> GZipEncoding:
        if self._buffer is None:
            self._buffer = _compress(self._body)
        return self

    @property
    def content_encoding(self) -> str:
        return "gzip"

    @property
    def content_type(self) -> str | None:
        return self._body.content_type

    @property
    def length(self) -> int:
        return -1 if self._buffer is None else len(self._buffer)

    def input_stream(self) -> typing.BinaryIO:
        self.materialize()
        return io.BytesIO(self._buffer)  # type: ignore[arg-type]

    def write(self, sink: Writable) -> None:
        if self._buffer is not None:
            sink.write(self._buffer)
            flush(sink)
            return
        compressor = _Compressor(sink)
        self._body.write(compressor)
        compressor.finish()
