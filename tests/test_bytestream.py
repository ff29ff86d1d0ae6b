import io

import pytest

import httpconn
from httpconn._bytestream import BUFFER_SIZE, drain, flush


class TrickleStream(io.RawIOBase):
    """Returns at most ``step`` bytes per read, like a slow socket."""

    def __init__(self, data: bytes, step: int) -> None:
        self._data = data
        self._position = 0
        self._step = step
        self.reads = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self.reads += 1
        chunk = self._data[self._position : self._position + min(self._step, len(buffer))]
        buffer[: len(chunk)] = chunk
        self._position += len(chunk)
        return len(chunk)


class ReadOnlyStream:
    """Has ``read()`` but no ``readinto()``."""

    def __init__(self, data: bytes) -> None:
        self._stream = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)


class CapacityRecordingStream(io.RawIOBase):
    """
    Records, for every ``readinto()``, where the offered buffer ends
    relative to the start of the data: the capacity of the caller's buffer.
    """

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._position = 0
        self.capacities: list[int] = []

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self.capacities.append(self._position + len(buffer))
        return self._read(buffer)

    def read(self, size: int = -1) -> bytes:
        buffer = bytearray(size)
        return bytes(buffer[: self._read(buffer)])

    def _read(self, buffer) -> int:
        chunk = self._data[self._position : self._position + len(buffer)]
        buffer[: len(chunk)] = chunk
        self._position += len(chunk)
        return len(chunk)


class FlushCountingSink(io.BytesIO):
    def __init__(self) -> None:
        super().__init__()
        self.flushes = 0

    def flush(self) -> None:
        self.flushes += 1
        super().flush()


@pytest.mark.parametrize(
    "size", [0, 1, BUFFER_SIZE - 1, BUFFER_SIZE, BUFFER_SIZE + 1, 5 * BUFFER_SIZE + 3]
)
def test_to_byte_array(size):
    data = bytes(range(256)) * (size // 256) + bytes(range(size % 256))
    assert httpconn.to_byte_array(io.BytesIO(data)) == data


def test_to_byte_array_with_short_reads():
    data = b"abcdefghij" * 2000
    stream = TrickleStream(data, step=7)
    assert httpconn.to_byte_array(stream) == data
    assert stream.reads > 1


@pytest.mark.parametrize(
    "size,capacity",
    [
        (1, BUFFER_SIZE),
        (BUFFER_SIZE, BUFFER_SIZE),
        (BUFFER_SIZE + 1, 2 * BUFFER_SIZE),
        (2 * BUFFER_SIZE, 2 * BUFFER_SIZE),
        (2 * BUFFER_SIZE + 1, 4 * BUFFER_SIZE),
    ],
)
def test_to_byte_array_buffer_growth(size, capacity):
    data = b"z" * size
    stream = CapacityRecordingStream(data)
    assert httpconn.to_byte_array(stream) == data
    assert max(stream.capacities) == capacity


def test_to_byte_array_without_readinto():
    data = b"x" * (BUFFER_SIZE * 2 + 1)
    assert httpconn.to_byte_array(ReadOnlyStream(data)) == data


def test_to_byte_array_leaves_stream_open():
    stream = io.BytesIO(b"data")
    httpconn.to_byte_array(stream)
    assert not stream.closed


def test_to_byte_array_within_max_size():
    data = b"x" * 100
    assert httpconn.to_byte_array(io.BytesIO(data), max_size=100) == data


def test_to_byte_array_exceeds_max_size():
    with pytest.raises(httpconn.SizeLimitExceeded) as exc_info:
        httpconn.to_byte_array(io.BytesIO(b"x" * 101), max_size=100)
    assert exc_info.value.max_size == 100


def test_to_byte_array_stops_reading_at_the_limit():
    stream = TrickleStream(b"x" * (BUFFER_SIZE * 100), step=BUFFER_SIZE)
    with pytest.raises(httpconn.SizeLimitExceeded):
        httpconn.to_byte_array(stream, max_size=BUFFER_SIZE)
    assert stream.reads < 10


def test_to_byte_array_zero_max_size():
    assert httpconn.to_byte_array(io.BytesIO(b""), max_size=0) == b""
    with pytest.raises(httpconn.SizeLimitExceeded):
        httpconn.to_byte_array(io.BytesIO(b"x"), max_size=0)


def test_to_byte_array_negative_max_size():
    with pytest.raises(ValueError):
        httpconn.to_byte_array(io.BytesIO(b""), max_size=-1)


def test_size_limit_exceeded_is_not_an_os_error():
    assert not issubclass(httpconn.SizeLimitExceeded, OSError)
    assert issubclass(httpconn.SizeLimitExceeded, httpconn.HTTPError)


def test_copy():
    source = io.BytesIO(b"y" * (BUFFER_SIZE * 3 + 10))
    sink = io.BytesIO()
    assert httpconn.copy(source, sink) == BUFFER_SIZE * 3 + 10
    assert sink.getvalue() == b"y" * (BUFFER_SIZE * 3 + 10)
    assert not source.closed
    assert not sink.closed


def test_copy_with_buffer_size():
    source = TrickleStream(b"z" * 100, step=100)
    sink = io.BytesIO()
    assert httpconn.copy(source, sink, buffer_size=10) == 100
    assert source.reads == 11


def test_drain():
    stream = io.BytesIO(b"leftover" * 5000)
    assert drain(stream) == 40000
    assert stream.read() == b""


def test_flush():
    sink = FlushCountingSink()
    flush(sink)
    assert sink.flushes == 1
    flush(object())  # type: ignore[arg-type]
