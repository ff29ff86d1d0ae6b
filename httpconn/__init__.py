# ruff: noqa: I001
from .__version__ import __description__, __title__, __version__
from ._exceptions import (
    HTTPError,
    HttpResponseError,
    InvalidMediaType,
    InvalidURL,
    SizeLimitExceeded,
    TooManyRedirects,
    UnsupportedProtocol,
)
from ._structures import CaseInsensitiveMap
from ._mediatype import MediaType
from ._bytestream import copy, to_byte_array
from ._content import ByteArrayBody, FileBody, FormBuilder, RequestBody
from ._gzip import GZipEncoding
from ._multipart import FormDataBuilder, MixedBuilder, MultipartBody, Part
from ._connection import Connection, KeepAliveCache
from ._response import (
    BufferedResponseBody,
    ConnectionResponseBody,
    HttpResponse,
    ResponseBody,
)
from ._ratelimit import RateLimiter, SimpleRateLimiter
from ._request import HttpRequest, HttpRequestWithBody
from ._client import ClientConfig, HttpClient
from ._urls import ParsedURL, parse_url

__all__ = sorted(
    (
        member
        for member in list(vars().keys())
        if not member.startswith("_")
        or member in ["__description__", "__title__", "__version__"]
    ),
    key=str.casefold,
)
