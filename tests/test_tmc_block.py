"""Tests for TMC block decoding and framing."""

import pytest

from pylxi.errors import FrameError, TruncatedResponseError
from pylxi.tmc_block import (
    block_payload,
    declared_length,
    decode_block,
    encode_block,
    header_size,
    is_block,
)

IMAGE = bytes([0x42, 0x4D, 0x00, 0xFF, 0x0A, 0x23, 0x31, 0x7F])


def test_scenario_eight_digit_header():
    """'#800001234' + 8 data bytes + terminator -> exactly those 8 bytes."""
    buf = b"#800001234" + IMAGE + b"\n"
    offset, length = decode_block(buf, len(buf))
    assert offset == 10
    assert length == 8
    assert buf[offset:offset + length] == IMAGE


@pytest.mark.parametrize("n", range(1, 10))
def test_payload_slice_for_every_digit_count(n):
    """Payload is buffer[N+2 : len-1] for every N in 1..9."""
    data = bytes(range(20))
    buf = b"#" + str(n).encode() + b"0" * n + data + b"\n"
    offset, length = decode_block(buf)
    assert offset == n + 2
    assert length == len(buf) - (n + 2) - 1
    assert block_payload(buf) == buf[n + 2:len(buf) - 1]


def test_valid_length_smaller_than_buffer():
    """Only the first `length` bytes count; the rest of the buffer is ignored."""
    buf = bytearray(64)
    frame = b"#13abc\n"
    buf[:len(frame)] = frame
    offset, length = decode_block(bytes(buf), len(frame))
    assert (offset, length) == (3, 3)


@pytest.mark.parametrize("n", [1, 5, 9])
def test_too_short_for_header_and_terminator(n):
    buf = (b"#" + str(n).encode() + b"1" * n)  # no terminator
    with pytest.raises(FrameError):
        decode_block(buf)


def test_minimum_length_gives_empty_payload():
    assert decode_block(b"#10\n") == (3, 0)
    assert block_payload(b"#10\n") == b""


def test_length_beyond_buffer():
    with pytest.raises(FrameError):
        decode_block(b"#10\n", 10)


@pytest.mark.parametrize("buf", [b"", b"#", b"X8000", b"#0abc\n", b"#A123\n", b"#:123\n"])
def test_malformed_headers(buf):
    with pytest.raises(FrameError):
        decode_block(buf)


def test_strict_accepts_matching_length():
    buf = encode_block(IMAGE, digits=8)
    assert buf[:10] == b"#800000008"
    assert decode_block(buf, strict=True) == (10, 8)


def test_strict_rejects_short_payload():
    """Scenario header declares 1234 bytes but only 8 arrived."""
    buf = b"#800001234" + IMAGE + b"\n"
    with pytest.raises(TruncatedResponseError) as ei:
        decode_block(buf, strict=True)
    assert ei.value.expected == 10 + 1234 + 1
    assert ei.value.received == len(buf)


def test_strict_rejects_surplus_payload():
    buf = b"#12" + b"abcd" + b"\n"
    with pytest.raises(FrameError):
        decode_block(buf, strict=True)


def test_strict_rejects_non_decimal_length_field():
    with pytest.raises(FrameError):
        decode_block(b"#2x1a\n", strict=True)


def test_roundtrip_with_chosen_digit_count():
    payload = b"\x00\x01\n\r#9binary"
    for digits in (None, 2, 4, 9):
        assert block_payload(encode_block(payload, digits=digits), strict=True) == payload


def test_encode_rejects_too_narrow_field():
    with pytest.raises(FrameError):
        encode_block(b"x" * 100, digits=2)


def test_is_block():
    assert is_block(b"#9000000001x\n")
    assert is_block(b"#0")  # indefinite length; the decoder rejects it
    assert not is_block(b"RIGOL TECHNOLOGIES,DS1054Z\n")
    assert not is_block(b"#")
    assert not is_block(b"")


def test_header_size_and_declared_length():
    assert header_size(b"#") is None
    assert header_size(b"#4") == 6
    assert declared_length(b"#41234") == 1234
    with pytest.raises(FrameError):
        declared_length(b"#412")
