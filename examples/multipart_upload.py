"""
Multipart Upload
================

Demonstrates uploading a file alongside form fields as
``multipart/form-data``, with a client-side rate limit.
"""

import pathlib
import sys
import tempfile

import httpconn


def main() -> None:
    client = httpconn.HttpClient.builder().set_rate_limit(2.0).build()

    with tempfile.TemporaryDirectory() as directory, client:
        path = pathlib.Path(directory) / "notes.txt"
        path.write_text("Remember the sunscreen.\n")

        for attempt in range(3):
            body = (
                httpconn.MultipartBody.form_data()
                .field("title", f"Holiday #{attempt}")
                .file("notes", path.name, httpconn.FileBody(path))
                .build()
            )
            request = client.post("https://httpbin.org/post").set_body(body)
            with request.send() as response:
                print(f"Upload {attempt} → {response.status_code}", file=sys.stderr)


if __name__ == "__main__":
    main()
