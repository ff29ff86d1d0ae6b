"""
Helpers for binary file-like objects.
"""

from __future__ import annotations

import typing

from ._exceptions import SizeLimitExceeded

BUFFER_SIZE = 8192


class Readable(typing.Protocol):
    def read(self, size: int = ..., /) -> bytes: ...


class Writable(typing.Protocol):
    def write(self, data: bytes, /) -> typing.Any: ...


def _read_into(stream: Readable, view: memoryview) -> int:
    readinto = getattr(stream, "readinto", None)
    if readinto is not None:
        return readinto(view) or 0
    data = stream.read(len(view))
    view[: len(data)] = data
    return len(data)


def _check_size(total: int, max_size: int | None) -> None:
    if max_size is not None and total > max_size:
        raise SizeLimitExceeded(
            f"stream exceeds the maximum size of {max_size} bytes", max_size=max_size
        )


def to_byte_array(stream: Readable, max_size: int | None = None) -> bytes:
    """
    Read ``stream`` to the end and return everything it produced.

    The data is collected in a buffer that starts at 8 KiB and doubles only
    when a full buffer is followed by more data, so the buffer is never more
    than one doubling larger than the data. If ``max_size`` is given,
    ``SizeLimitExceeded`` is raised as soon as more than ``max_size`` bytes
    have been read. The stream is not closed.
    """
    if max_size is not None and max_size < 0:
        raise ValueError(f"max_size must be non-negative, got {max_size}")

    buffer = bytearray(BUFFER_SIZE)
    total = 0
    while True:
        with memoryview(buffer) as view:
            while total < len(buffer):
                count = _read_into(stream, view[total:])
                if count <= 0:
                    break
                total += count
        _check_size(total, max_size)

        probe = stream.read(1)
        if not probe:
            break
        if total == len(buffer):
            buffer.extend(bytes(len(buffer)))
        buffer[total] = probe[0]
        total += 1
        _check_size(total, max_size)

    del buffer[total:]
    return bytes(buffer)


def copy(source: Readable, sink: Writable, buffer_size: int = BUFFER_SIZE) -> int:
    """
    Copy ``source`` into ``sink`` and return the number of bytes copied.
    Neither stream is closed or flushed.
    """
    total = 0
    while True:
        chunk = source.read(buffer_size)
        if not chunk:
            return total
        sink.write(chunk)
        total += len(chunk)


def drain(stream: Readable, buffer_size: int = BUFFER_SIZE) -> int:
    """
    Read ``stream`` to the end, discarding the data.
    """
    total = 0
    while True:
        chunk = stream.read(buffer_size)
        if not chunk:
            return total
        total += len(chunk)


def flush(sink: Writable) -> None:
    """
    Flush ``sink`` if it supports flushing.
    """
    method = getattr(sink, "flush", None)
    if method is not None:
        method()
