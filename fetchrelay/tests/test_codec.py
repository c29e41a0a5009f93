# tests/test_codec.py
import struct
import zlib

import pytest

from fetchrelay.relay import codec
from fetchrelay.relay.errors import MalformedRequest


def test_encode_hexes_values_without_leading_separator():
    assert codec.encode({"url": "http://a"}) == b"url=" + b"http://a".hex().encode()


def test_encode_empty_mapping():
    assert codec.encode({}) == b""


def test_round_trip_byte_values():
    m = {
        "method": b"GET",
        "payload": bytes(range(256)),
        "headers": b"Accept: */*\r\nX-A: 1",
        "empty": b"",
    }
    assert codec.decode(codec.encode(m)) == m


def test_str_values_are_utf8_encoded():
    assert codec.decode(codec.encode({"k": "héllo"})) == {"k": "héllo".encode("utf-8")}


def test_decode_skips_segments_without_equals():
    data = b"&method=474554&garbage&&url=" + b"http://x".hex().encode()
    assert codec.decode(data) == {"method": b"GET", "url": b"http://x"}


def test_decode_skips_values_that_are_not_hex():
    assert codec.decode(b"a=zz&b=6869") == {"b": b"hi"}


def test_decode_empty_input():
    assert codec.decode(b"") == {}


@pytest.mark.parametrize("textual", [True, False])
def test_frame_round_trip(textual):
    header_bytes = codec.encode({"Content-Type": "text/plain", "X-A": "1"})
    content = b"hello world " * 64
    frame = codec.frame_response(404, header_bytes, content, textual)
    assert frame[:1] == (b"1" if textual else b"0")
    assert codec.unframe_response(frame) == (404, header_bytes, content)


def test_binary_frame_layout():
    frame = codec.frame_response(200, b"h=00", b"\x89PNG", textual=False)
    assert frame == b"0" + struct.pack(">III", 200, 4, 4) + b"h=00" + b"\x89PNG"


def test_textual_frame_compresses_everything_after_flag():
    frame = codec.frame_response(201, b"hdr", b"body", textual=True)
    assert frame[:1] == b"1"
    assert zlib.decompress(frame[1:]) == struct.pack(">III", 201, 3, 4) + b"hdrbody"


def test_render_response_selects_framing_from_content_type():
    assert codec.render_response(200, {"content-type": "text/html; charset=utf-8"}, b"x")[:1] == b"1"
    assert codec.render_response(200, {"Content-Type": "image/png"}, b"x")[:1] == b"0"
    assert codec.render_response(200, {}, b"x")[:1] == b"0"


def test_textual_prefix_is_case_sensitive():
    assert codec.render_response(200, {"Content-Type": "TEXT/html"}, b"x")[:1] == b"0"


def test_render_response_accepts_raw_header_octets():
    frame = codec.render_response(
        200, {"Content-Type": b"text/plain", "X-Name": b"\xc3\xa9"}, b"x"
    )
    assert frame[:1] == b"1"
    header_bytes = codec.unframe_response(frame)[1]
    assert codec.decode(header_bytes) == {"Content-Type": b"text/plain", "X-Name": b"\xc3\xa9"}


def test_render_response_header_block_is_an_encoded_message():
    frame = codec.render_response(302, {"Location": "http://b/"}, b"")
    status, header_bytes, content = codec.unframe_response(frame)
    assert status == 302
    assert codec.decode(header_bytes) == {"Location": b"http://b/"}
    assert content == b""


def test_iter_frames_reads_concatenated_frames():
    first = codec.frame_response(403, b"", b"nope", textual=True)
    second = codec.frame_response(200, b"", b"\x00\x01", textual=False)
    assert list(codec.iter_frames(first + second)) == [
        (403, b"", b"nope"),
        (200, b"", b"\x00\x01"),
    ]


@pytest.mark.parametrize(
    "data",
    [b"2abc", b"0\x00\x00", b"0" + struct.pack(">III", 200, 10, 10) + b"short", b"1notzlib"],
)
def test_unframe_rejects_bad_frames(data):
    with pytest.raises(ValueError):
        codec.unframe_response(data)


def test_request_body_round_trip():
    body = codec.encode_request_body({"method": "GET", "url": "http://example.com/"})
    assert codec.decode_request_body(body) == {
        "method": b"GET",
        "url": b"http://example.com/",
    }


def test_decode_request_body_rejects_uncompressed_input():
    with pytest.raises(MalformedRequest) as exc:
        codec.decode_request_body(b"method=474554")
    assert exc.value.status == 400
