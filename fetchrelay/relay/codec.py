# fetchrelay/relay/codec.py
"""
Wire codec for relay calls.

Inbound:  zlib( "method=<hex>&url=<hex>&headers=<hex>&payload=<hex>[&password=<hex>]" )
Outbound: b"1" + zlib( status | hdr_len | body_len | hdr_block | body )   text/* responses
          b"0" +       status | hdr_len | body_len | hdr_block | body     everything else

The three length/status fields are big-endian uint32. The header block is an
encoded message like the inbound one. Whatever the inner status is, the
hosting endpoint answers 200 with Content-Type image/gif.
"""
from __future__ import annotations

import logging
import struct
import zlib
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from fetchrelay.http.headers import get_ci, is_textual
from fetchrelay.relay.errors import MalformedRequest

logger = logging.getLogger(__name__)

TEXTUAL = b"1"
BINARY = b"0"

ENVELOPE_STATUS = 200
ENVELOPE_CONTENT_TYPE = "image/gif"

_FRAME_HEAD = struct.Struct(">III")

Frame = Tuple[int, bytes, bytes]


def _as_bytes(value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value).encode("utf-8")


# ---- encoded messages ----


def encode(mapping: Mapping[str, Union[str, bytes]]) -> bytes:
    out = bytearray()
    for name, value in mapping.items():
        out += b"&" + name.encode("ascii") + b"=" + _as_bytes(value).hex().encode("ascii")
    return bytes(out[1:])


def decode(data: bytes) -> Dict[str, bytes]:
    """
    Inverse of encode(). Empty segments and segments without '=' are skipped,
    as are values that are not valid hex.
    """
    fields: Dict[str, bytes] = {}
    for segment in bytes(data or b"").split(b"&"):
        if not segment:
            continue
        name, sep, value = segment.partition(b"=")
        if not sep:
            continue
        try:
            fields[name.decode("ascii")] = bytes.fromhex(value.decode("ascii"))
        except ValueError:
            logger.debug("skipping undecodable segment %r", name[:64])
    return fields


def decode_request_body(body: bytes) -> Dict[str, bytes]:
    try:
        raw = zlib.decompress(body)
    except zlib.error as e:
        raise MalformedRequest(f"undecodable request body: {e}") from e
    return decode(raw)


def encode_request_body(mapping: Mapping[str, Union[str, bytes]]) -> bytes:
    """Caller-side mirror of decode_request_body()."""
    return zlib.compress(encode(mapping))


# ---- response frames ----


def frame_response(
    status: int, header_bytes: bytes, content: bytes, textual: bool
) -> bytes:
    head = _FRAME_HEAD.pack(int(status), len(header_bytes), len(content))
    if not textual:
        return BINARY + head + header_bytes + content

    # flag byte stays outside the deflate stream
    z = zlib.compressobj()
    return (
        TEXTUAL
        + z.compress(head)
        + z.compress(header_bytes)
        + z.compress(content)
        + z.flush()
    )


def render_response(
    status: int, headers: Mapping[str, Union[str, bytes]], content: bytes
) -> bytes:
    content_type = get_ci(dict(headers), "Content-Type")
    if isinstance(content_type, (bytes, bytearray)):
        content_type = bytes(content_type).decode("latin-1")
    textual = is_textual(content_type)
    return frame_response(status, encode(headers), content, textual)


def _split_frame(data: bytes) -> Tuple[Frame, bytes]:
    flag, rest = data[:1], data[1:]
    remainder: Optional[bytes] = None
    if flag == TEXTUAL:
        d = zlib.decompressobj()
        try:
            payload = d.decompress(rest)
        except zlib.error as e:
            raise ValueError(f"corrupt compressed frame: {e}") from e
        if not d.eof:
            raise ValueError("truncated compressed frame")
        remainder = d.unused_data
    elif flag == BINARY:
        payload = rest
    else:
        raise ValueError(f"unknown frame flag {flag!r}")

    if len(payload) < _FRAME_HEAD.size:
        raise ValueError("short frame")
    status, hlen, clen = _FRAME_HEAD.unpack_from(payload)
    start = _FRAME_HEAD.size
    end = start + hlen + clen
    if len(payload) < end:
        raise ValueError("truncated frame")

    frame = (status, payload[start : start + hlen], payload[start + hlen : end])
    if remainder is None:
        remainder = payload[end:]
    return frame, remainder


def unframe_response(data: bytes) -> Frame:
    """Reads the first frame in `data` -> (status, header_bytes, content)."""
    frame, _ = _split_frame(bytes(data))
    return frame


def iter_frames(data: bytes) -> Iterator[Frame]:
    rest = bytes(data)
    while rest:
        frame, rest = _split_frame(rest)
        yield frame
