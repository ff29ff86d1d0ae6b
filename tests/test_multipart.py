import io

import pytest

from httpconn import ByteArrayBody, FileBody, GZipEncoding, MultipartBody, Part, RequestBody


def render(body: MultipartBody) -> bytes:
    sink = io.BytesIO()
    body.write(sink)
    return sink.getvalue()


def test_part_headers_from_body():
    part = Part(ByteArrayBody(b"abc").set_content_type("text/plain"))
    assert list(part.headers.items()) == [
        ("Content-Length", "3"),
        ("Content-Type", "text/plain"),
        ("Content-Transfer-Encoding", "binary"),
    ]


def test_part_headers_with_encoding_and_unknown_length():
    part = Part(GZipEncoding.stream(ByteArrayBody(b"abc")))
    assert dict(part.headers) == {
        "Content-Encoding": "gzip",
        "Content-Transfer-Encoding": "binary",
    }


def test_part_headers_are_a_copy():
    part = Part(ByteArrayBody(b"abc"))
    headers = part.headers
    headers["X-Extra"] = "1"  # type: ignore[index]
    assert "X-Extra" not in part.headers
    part.set_header("x-extra", "2")
    assert part.headers["X-EXTRA"] == "2"


def test_form_data():
    body = (
        MultipartBody.form_data()
        .boundary("simple boundary")
        .field("title", "Holiday")
        .field('"note"', ByteArrayBody(b"{}").set_content_type("application/json"))
        .build()
    )
    assert body.content_type == 'multipart/form-data; boundary="simple boundary"'
    assert body.boundary == "simple boundary"
    assert body.length == -1
    assert render(body) == (
        b"--simple boundary\r\n"
        b"Content-Length: 7\r\n"
        b'Content-Type: text/plain; charset="UTF-8"\r\n'
        b"Content-Transfer-Encoding: binary\r\n"
        b'Content-Disposition: form-data; name="title"\r\n'
        b"\r\n"
        b"Holiday\r\n"
        b"--simple boundary\r\n"
        b"Content-Length: 2\r\n"
        b"Content-Type: application/json\r\n"
        b"Content-Transfer-Encoding: binary\r\n"
        b'Content-Disposition: form-data; name="note"\r\n'
        b"\r\n"
        b"{}\r\n"
        b"--simple boundary--\r\n"
    )


def test_form_data_file(tmp_path):
    path = tmp_path / "beach.txt"
    path.write_bytes(b"sand")
    body = (
        MultipartBody.form_data()
        .boundary("xyz")
        .file("photo", "beach.txt", FileBody(path))
        .build()
    )
    assert render(body) == (
        b"--xyz\r\n"
        b"Content-Length: 4\r\n"
        b"Content-Type: text/plain\r\n"
        b"Content-Transfer-Encoding: binary\r\n"
        b'Content-Disposition: form-data; name="photo"; filename="beach.txt"\r\n'
        b"\r\n"
        b"sand\r\n"
        b"--xyz--\r\n"
    )


def test_mixed():
    body = (
        MultipartBody.mixed()
        .boundary("b")
        .part(ByteArrayBody(b"one"))
        .part(Part(ByteArrayBody(b"two")).set_header("Content-ID", "<2>"))
        .build()
    )
    assert body.content_type == 'multipart/mixed; boundary="b"'
    assert len(body.parts) == 2
    assert render(body) == (
        b"--b\r\n"
        b"Content-Length: 3\r\n"
        b"Content-Transfer-Encoding: binary\r\n"
        b"\r\n"
        b"one\r\n"
        b"--b\r\n"
        b"Content-Length: 3\r\n"
        b"Content-Transfer-Encoding: binary\r\n"
        b"Content-ID: <2>\r\n"
        b"\r\n"
        b"two\r\n"
        b"--b--\r\n"
    )


def test_generated_boundary_is_unique():
    first = MultipartBody.mixed().part(ByteArrayBody(b"a")).build()
    second = MultipartBody.mixed().part(ByteArrayBody(b"a")).build()
    assert first.boundary != second.boundary
    assert first.boundary.startswith("__END_OF_PART__")


@pytest.mark.parametrize("boundary", ["", "ends with space ", "has\"quote", "x" * 71])
def test_invalid_boundary(boundary):
    with pytest.raises(ValueError):
        MultipartBody.mixed().boundary(boundary)


def test_longest_boundary():
    assert MultipartBody.mixed().boundary("x" * 70).part(ByteArrayBody(b"")).build()


def test_no_parts():
    with pytest.raises(ValueError):
        MultipartBody.form_data().build()


def test_input_stream_is_not_supported():
    body = MultipartBody.mixed().part(ByteArrayBody(b"a")).build()
    assert isinstance(body, RequestBody)
    with pytest.raises(NotImplementedError):
        body.input_stream()
