# tmc_block.py
"""
TMC (IEEE 488.2 definite-length arbitrary) block framing.

Layout of a binary response as sent by the instrument:

    +-----+-----+----------------+------------------+------------+
    | '#' |  N  |  N len digits  |  <len> raw bytes | terminator |
    +-----+-----+----------------+------------------+------------+

  - N is a single ASCII digit 1..9 (number of digits in the length field).
  - The length field is N ASCII decimal digits (e.g. '#800001234').
  - Exactly one terminator byte ('\n') follows the payload.

The default decoder sizes the header from N alone and drops the last byte
as terminator; strict mode also cross-checks the declared length.
"""

from __future__ import annotations

from typing import Optional, Tuple

from pylxi.errors import FrameError, TruncatedResponseError

# Upper bound for a single response (screenshots are ~1.2 MB on a DS1000Z)
MESSAGE_LENGTH_MAX = 10 * 1024 * 1024

BLOCK_PREFIX = b"#"
DIGIT0, DIGIT9 = ord('0'), ord('9')


def is_block(buffer: bytes) -> bool:
    """True if buffer starts with '#' followed by a digit 0..9.

    '#0' (indefinite length) counts as a block so the decoder can reject it.
    """
    return len(buffer) >= 2 and buffer[0:1] == BLOCK_PREFIX and DIGIT0 <= buffer[1] <= DIGIT9


def _digit_count(buffer: bytes) -> int:
    if len(buffer) < 2:
        raise FrameError(f"Buffer too short for a TMC header ({len(buffer)} bytes)")
    if buffer[0:1] != BLOCK_PREFIX:
        raise FrameError(f"Expected '#', got {buffer[0:1]!r}")
    c = buffer[1]
    if c == DIGIT0:
        raise FrameError("Indefinite-length block ('#0') is not supported")
    if not DIGIT0 < c <= DIGIT9:
        raise FrameError(f"Invalid length digit count {buffer[1:2]!r}")
    return c - DIGIT0


def header_size(buffer: bytes) -> Optional[int]:
    """Header size ('#', N and the N length digits), or None while N is not yet known."""
    if len(buffer) < 2:
        return None
    return _digit_count(buffer) + 2


def declared_length(buffer: bytes) -> int:
    """Parse the payload length the header announces."""
    h = _digit_count(buffer) + 2
    field = bytes(buffer[2:h])
    if len(field) < h - 2:
        raise FrameError(f"Length field incomplete: {field!r}")
    if not field.isdigit():
        raise FrameError(f"Length field is not decimal: {field!r}")
    return int(field.decode('ascii'))


def decode_block(buffer: bytes, length: Optional[int] = None, *, strict: bool = False) -> Tuple[int, int]:
    """Locate the payload of a TMC block.

    Args:
      buffer: received response, starting with the block header
      length: number of valid bytes in buffer (default: all of it)
      strict: also parse the length field and require it to match

    Returns:
      (payload_offset, payload_length); the payload is
      buffer[payload_offset:payload_offset + payload_length].

    Raises:
      FrameError: malformed header, or header/terminator do not fit.
      TruncatedResponseError: strict mode, fewer payload bytes than declared.
    """
    if length is None:
        length = len(buffer)
    if length < 0 or length > len(buffer):
        raise FrameError(f"Valid length {length} outside buffer of {len(buffer)} bytes")

    h = _digit_count(buffer[:length]) + 2
    if length < h + 1:
        raise FrameError(f"Response of {length} bytes cannot hold a {h}-byte header and terminator")

    payload_length = length - h - 1

    if strict:
        declared = declared_length(buffer[:h])
        if declared > payload_length:
            raise TruncatedResponseError(h + declared + 1, length)
        if declared < payload_length:
            raise FrameError(f"Block declares {declared} bytes but carries {payload_length}")

    return h, payload_length


def block_payload(buffer: bytes, *, strict: bool = False) -> bytes:
    """Return the payload bytes of a complete TMC block."""
    offset, n = decode_block(buffer, strict=strict)
    return bytes(buffer[offset:offset + n])


def encode_block(payload: bytes, terminator: bytes = b"\n", *, digits: Optional[int] = None) -> bytes:
    """Frame payload as '#N<len><payload><terminator>'.

    digits forces the width N of the length field (zero padded), e.g. the
    '#800001234' style most oscilloscopes use; by default it is minimal.
    """
    n_str = str(len(payload))
    if digits is not None:
        if len(n_str) > digits:
            raise FrameError(f"{len(payload)} does not fit in {digits} length digits")
        n_str = n_str.zfill(digits)
    if not 1 <= len(n_str) <= 9:
        raise FrameError(f"Length field must have 1..9 digits, got {len(n_str)}")
    header = b"#" + str(len(n_str)).encode("ascii") + n_str.encode("ascii")
    return header + bytes(payload) + terminator
