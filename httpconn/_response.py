from __future__ import annotations

import datetime
import email.utils
import gzip
import http.client
import io
import logging
import types
import typing
import zlib

from ._bytestream import BUFFER_SIZE, to_byte_array
from ._exceptions import HttpResponseError, SizeLimitExceeded
from ._mediatype import MediaType
from ._structures import CaseInsensitiveMap

if typing.TYPE_CHECKING:
    from ._connection import Connection

logger = logging.getLogger("httpconn.response")

DEFAULT_CHARSET = "iso-8859-1"

# Failures that can occur while reading and decoding a response payload.
READ_ERRORS = (OSError, EOFError, zlib.error, http.client.HTTPException)


# ---------------------------------------------------------------------------
# Payload streams
# ---------------------------------------------------------------------------


class _ResponseStream(io.RawIOBase):
    """
    A view of the response payload. Closing it leaves the response open,
    so whether the payload was consumed is always judged on the response
    itself.
    """

    def __init__(self, raw: http.client.HTTPResponse) -> None:
        self._raw = raw

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: typing.Any) -> int:
        return self._raw.readinto(buffer)


class _DeflateReader(io.RawIOBase):
    """
    Inflates a ``deflate`` payload. Servers disagree on whether that means
    zlib-wrapped or raw deflate data, so both are accepted.
    """

    def __init__(self, raw: typing.BinaryIO) -> None:
        self._raw = raw
        self._decompressor = zlib.decompressobj()
        self._first_try = True
        self._first_data = b""
        self._pending = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: typing.Any) -> int:
        view = memoryview(buffer).cast("B")
        while not self._pending and not self._eof:
            chunk = self._raw.read(BUFFER_SIZE)
            if chunk:
                self._pending = self._decompress(chunk)
            else:
                self._pending = self._decompressor.flush()
                self._eof = True
        count = min(len(view), len(self._pending))
        view[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        return count

    def _decompress(self, data: bytes) -> bytes:
        if not self._first_try:
            return self._decompressor.decompress(data)

        self._first_data += data
        try:
            decompressed = self._decompressor.decompress(data)
            if decompressed:
                self._first_try = False
                self._first_data = b""
            return decompressed
        except zlib.error:
            self._first_try = False
            self._decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
            try:
                return self._decompressor.decompress(self._first_data)
            finally:
                self._first_data = b""


def _parse_date(value: str | None) -> datetime.datetime | None:
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Response bodies
# ---------------------------------------------------------------------------


class ResponseBody:
    """
    The payload of a response, decompressed according to its
    ``Content-Encoding``.
    """

    def __init__(self, charset: str) -> None:
        self._charset = charset

    @property
    def charset(self) -> str:
        return self._charset

    def input_stream(self) -> typing.BinaryIO:
        raise NotImplementedError()  # pragma: no cover

    def to_bytes(self, max_size: int | None = None) -> bytes:
        """
        Read the whole payload. Raises ``SizeLimitExceeded`` once more than
        ``max_size`` bytes have been read.
        """
        with self.input_stream() as stream:
            return to_byte_array(stream, max_size)

    def as_string(self, charset: str | None = None) -> str:
        """
        Read the whole payload and decode it, by default with the charset
        of the response.
        """
        return self.to_bytes().decode(charset or self._charset, errors="replace")


class ConnectionResponseBody(ResponseBody):
    """
    A payload read from the connection. It can only be read once, and must
    be read to the end for the connection to be reused.
    """

    def __init__(self, response: HttpResponse, charset: str) -> None:
        super().__init__(charset)
        self._response = response

    def input_stream(self) -> typing.BinaryIO:
        return self._response._open_payload()


class BufferedResponseBody(ResponseBody):
    """
    A payload that has been read into memory. It can be read any number of
    times.
    """

    def __init__(self, data: bytes, charset: str = DEFAULT_CHARSET) -> None:
        super().__init__(charset)
        self._data = data

    def input_stream(self) -> typing.BinaryIO:
        return io.BytesIO(self._data)

    def to_bytes(self, max_size: int | None = None) -> bytes:
        if max_size is not None and len(self._data) > max_size:
            raise SizeLimitExceeded(
                f"stream exceeds the maximum size of {max_size} bytes", max_size=max_size
            )
        return self._data

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} [{len(self._data)} bytes]>"


# ---------------------------------------------------------------------------
# HttpResponse
# ---------------------------------------------------------------------------


class HttpResponse:
    """
    The status, headers and payload of a response with a 2xx status.

    Creating a response for any other status closes it and raises
    ``HttpResponseError`` carrying the status, headers and the error
    payload the server sent.

    A response must always be closed, which is easiest with ``with``::

        with request.send() as response:
            text = response.body.as_string()

    ``close()`` checks that every stream handed out was read to the end.
    If so the connection is kept alive for the next request; if anything
    was left unread, or reading or closing failed, the connection is
    dropped.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._streams: list[typing.BinaryIO] = []
        self._closed = False

        raw = connection.get_response()
        self._raw = raw
        self._register(typing.cast(typing.BinaryIO, raw))

        self._status_code = raw.status
        self._reason_phrase = raw.reason
        self._http_version = "HTTP/1.0" if raw.version == 10 else "HTTP/1.1"
        self._status_line = f"{self._http_version} {raw.status} {raw.reason}".rstrip()
        self._url = str(connection.url.without_userinfo())
        self._method = connection.method

        headers: CaseInsensitiveMap[tuple[str, ...]] = CaseInsensitiveMap()
        for name, value in raw.headers.items():
            headers[name] = headers.get(name, ()) + (value,)
        self._headers = types.MappingProxyType(headers)

        self._content_type = self.header("Content-Type")
        self._content_encoding = self.header("Content-Encoding")
        self._media_type = MediaType.try_parse(self._content_type)
        self._charset = (
            self._media_type.charset
            if self._media_type is not None and self._media_type.charset is not None
            else DEFAULT_CHARSET
        )

        if not 200 <= self._status_code < 300:
            self._raise_for_status()

        self._has_body = not (
            self._method == "HEAD"
            or self._status_code < 200
            or self._status_code in (204, 304)
        )
        self._body: ResponseBody | None = (
            ConnectionResponseBody(self, self._charset) if self._has_body else None
        )

    def _register(self, stream: typing.BinaryIO) -> typing.BinaryIO:
        self._streams.append(stream)
        return stream

    def _open_payload(self) -> typing.BinaryIO:
        if self._closed:
            raise ValueError("The response has been closed.")
        encoding = (self._content_encoding or "").strip().lower()
        stream: typing.Any
        if encoding in ("gzip", "x-gzip"):
            stream = gzip.GzipFile(fileobj=self._raw, mode="rb")  # type: ignore[arg-type]
        elif encoding == "deflate":
            stream = io.BufferedReader(_DeflateReader(typing.cast(typing.BinaryIO, self._raw)))
        else:
            stream = io.BufferedReader(_ResponseStream(self._raw))
        return self._register(stream)

    def _raise_for_status(self) -> typing.NoReturn:
        error = HttpResponseError(
            self._status_line,
            status_code=self._status_code,
            reason_phrase=self._reason_phrase,
            headers=self._headers,
            url=self._url,
        )
        cause: BaseException | None = None
        try:
            data = to_byte_array(self._open_payload())
        except READ_ERRORS as exc:
            cause = exc
        else:
            if data:
                error.body = BufferedResponseBody(data, self._charset)

        try:
            self.close()
        except Exception as exc:
            error.add_note(f"Closing the response also failed: {exc!r}")
        raise error from cause

    # -- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        """
        Close every stream handed out by this response, and release or drop
        the connection.

        Each stream is probed with one more read: end of stream means the
        payload was consumed. Anything else marks the connection as unfit
        for reuse. All streams are processed even when some fail; the first
        failure is raised afterwards, with the others attached as notes.
        """
        if self._closed:
            return
        self._closed = True

        errors: list[Exception] = []
        dirty = False
        for stream in reversed(self._streams):
            if stream is not self._raw and stream.closed:
                continue
            try:
                if stream.read(1):
                    dirty = True
            except Exception as exc:
                dirty = True
                errors.append(exc)
            try:
                stream.close()
            except Exception as exc:
                dirty = True
                errors.append(exc)
        self._streams.clear()

        if dirty:
            if errors:
                logger.warning("Failed to close response from %s: %r", self._url, errors[0])
            else:
                logger.debug("Response from %s was not fully read, disconnecting", self._url)
            self._connection.disconnect()
        else:
            self._connection.release()

        if errors:
            first = errors[0]
            for other in errors[1:]:
                first.add_note(f"Also raised while closing the response: {other!r}")
            raise first

    def disconnect(self) -> HttpResponse:
        """
        Drop the underlying connection immediately.
        """
        self._connection.disconnect()
        return self

    def __enter__(self) -> HttpResponse:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: types.TracebackType | None,
    ) -> None:
        if exc_value is None:
            self.close()
            return
        # Keep the error that ended the block as the one that propagates.
        try:
            self.close()
        except Exception as exc:
            exc_value.add_note(f"Closing the response also failed: {exc!r}")

    @property
    def is_closed(self) -> bool:
        return self._closed

    # -- accessors ---------------------------------------------------------

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def reason_phrase(self) -> str:
        return self._reason_phrase

    @property
    def http_version(self) -> str:
        return self._http_version

    @property
    def status_line(self) -> str:
        return self._status_line

    @property
    def url(self) -> str:
        return self._url

    @property
    def headers(self) -> typing.Mapping[str | None, tuple[str, ...]]:
        return self._headers

    def header(self, name: str) -> str | None:
        """
        The last value of the header ``name``, or ``None``.
        """
        values = self._headers.get(name)
        return values[-1] if values else None

    @property
    def content_type(self) -> str | None:
        return self._content_type

    @property
    def content_encoding(self) -> str | None:
        return self._content_encoding

    @property
    def content_length(self) -> int:
        value = self.header("Content-Length")
        try:
            return int(value) if value is not None else -1
        except ValueError:
            return -1

    @property
    def content_charset(self) -> str:
        return self._charset

    @property
    def media_type(self) -> MediaType | None:
        return self._media_type

    @property
    def date(self) -> datetime.datetime | None:
        return _parse_date(self.header("Date"))

    @property
    def expires(self) -> datetime.datetime | None:
        return _parse_date(self.header("Expires"))

    @property
    def last_modified(self) -> datetime.datetime | None:
        return _parse_date(self.header("Last-Modified"))

    @property
    def has_body(self) -> bool:
        return self._has_body

    @property
    def body(self) -> ResponseBody | None:
        return self._body

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} [{self._status_code} {self._reason_phrase}]>"
