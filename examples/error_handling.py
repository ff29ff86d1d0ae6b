"""
Error Handling
==============

Demonstrates httpconn's exception hierarchy and how to handle HTTP errors.

Exception hierarchy:
    HTTPError
    ├── HttpResponseError      (any status outside 2xx, with the error body)
    ├── TooManyRedirects
    ├── SizeLimitExceeded      (a body larger than the caller allowed)
    ├── InvalidMediaType
    ├── InvalidURL
    └── UnsupportedProtocol

Network failures are the standard ``OSError`` family (``TimeoutError``,
``ConnectionRefusedError``, ``ssl.SSLError``) and ``http.client``
exceptions.
"""

import httpconn


def main() -> None:
    client = httpconn.HttpClient.builder().set_connect_timeout(5).set_read_timeout(5).build()

    with client:
        # ── Error statuses ───────────────────────────────────────────────────
        print("── Error statuses ──────────────────────────────────────────────")
        try:
            client.get("https://httpbin.org/status/404").send()
        except httpconn.HttpResponseError as exc:
            print(f"  {exc} from {exc.url}")
            if exc.body is not None:
                print(f"  Server said: {exc.body.as_string()[:80]!r}")
        print()

        # ── Limiting how much is read ────────────────────────────────────────
        print("── Size limits ─────────────────────────────────────────────────")
        with client.get("https://httpbin.org/bytes/4096").send() as response:
            try:
                response.body.to_bytes(max_size=1024)
            except httpconn.SizeLimitExceeded as exc:
                print(f"  Gave up after {exc.max_size} bytes")
        print()

        # ── Timeouts ─────────────────────────────────────────────────────────
        print("── Timeouts ────────────────────────────────────────────────────")
        try:
            with client.get("https://httpbin.org/delay/3").set_read_timeout(1).send() as response:
                response.body.to_bytes()
        except TimeoutError:
            print("  Read timed out")
        print()

        # ── Malformed input ──────────────────────────────────────────────────
        print("── Malformed input ─────────────────────────────────────────────")
        for url in ("ftp://example.org/", "http://:80/"):
            try:
                client.get(url)
            except httpconn.HTTPError as exc:
                print(f"  {type(exc).__name__}: {exc}")
        try:
            httpconn.MediaType.parse("text/plain; charset")
        except httpconn.InvalidMediaType as exc:
            print(f"  InvalidMediaType: {exc}")


if __name__ == "__main__":
    main()
