"""
Basic Requests
==============

Demonstrates a shared client: GET, POST with a form, a gzip-compressed
upload, and reading the response body. Every response is closed with
``with`` so its connection can be reused.
"""

import json

import httpconn


def main() -> None:
    client = (
        httpconn.HttpClient.builder()
        .set_user_agent("httpconn-example/1.0")
        .set_read_timeout(30)
        .build()
    )

    with client:
        # ── GET ──────────────────────────────────────────────────────────────
        with client.get("https://httpbin.org/get?page=1").send() as response:
            print(f"GET  → {response.status_line}")
            print(f"  URL:          {response.url}")
            print(f"  Content-Type: {response.content_type}")
            print(f"  Charset:      {response.content_charset}")
            print(f"  Args:         {json.loads(response.body.as_string())['args']}")
        print()

        # ── POST a form ──────────────────────────────────────────────────────
        form = httpconn.FormBuilder().encode("q", "fish & chips").add("page", "2").build()
        with client.post("https://httpbin.org/post").set_body(form).send() as response:
            print(f"POST → {response.status_code}")
            print(f"  Form echoed: {json.loads(response.body.as_string())['form']}")
        print()

        # ── PUT a gzip-compressed JSON document ─────────────────────────────
        document = httpconn.ByteArrayBody.encode(json.dumps({"id": 1, "name": "example"}))
        body = httpconn.GZipEncoding.stream(document.set_content_type("application/json"))
        with client.put("https://httpbin.org/put").set_body(body).send() as response:
            print(f"PUT  → {response.status_code} (sent chunked, {body.content_encoding})")
        print()

        # ── HEAD ─────────────────────────────────────────────────────────────
        with client.head("https://httpbin.org/get").send() as response:
            print(f"HEAD → {response.status_code}, has body: {response.has_body}")


if __name__ == "__main__":
    main()
