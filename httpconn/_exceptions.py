"""
Our exception hierarchy:

* HTTPError
  x InvalidMediaType
  x InvalidURL
  x UnsupportedProtocol
  x SizeLimitExceeded
  x TooManyRedirects
  x HttpResponseError

Transport failures (timeouts, refused or reset connections, protocol
errors raised by ``http.client``) are ``OSError`` or
``http.client.HTTPException`` instances and propagate unchanged.
"""

from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from ._response import BufferedResponseBody


class HTTPError(Exception):
    """
    Base class for every error raised by this package.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidMediaType(HTTPError, ValueError):
    """
    A Content-Type value does not follow the media type grammar.
    """


class InvalidURL(HTTPError, ValueError):
    """
    URL is improperly formed or cannot be parsed.
    """


class UnsupportedProtocol(HTTPError, ValueError):
    """
    Attempted to make a request to a URL that is not ``http`` or ``https``.
    """


class TooManyRedirects(HTTPError):
    """
    Too many redirects.
    """


class SizeLimitExceeded(HTTPError):
    """
    A stream produced more bytes than the caller allowed.
    """

    def __init__(self, message: str, *, max_size: int) -> None:
        super().__init__(message)
        self.max_size = max_size


class HttpResponseError(HTTPError):
    """
    The server answered with a status code outside of the 2xx range.

    ``body`` holds the fully read (and decompressed) error payload, or
    ``None`` when the server sent nothing or the payload could not be read.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        reason_phrase: str,
        headers: typing.Mapping[str | None, tuple[str, ...]],
        url: str,
        body: BufferedResponseBody | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self.headers = headers
        self.url = url
        self.body = body
