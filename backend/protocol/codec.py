"""
Fixed-header framing for the MediaBridge wire protocol.

Header layout (59 bytes):
    [1 byte   - command code]
    [8 bytes  - payload size (little-endian u64)]
    [50 bytes - info text (UTF-8, NUL padded)]

The payload that follows is opaque to this module.
"""

import struct

from errors import ProtocolError
from protocol.models import Command, FrameHeader, InvalidHeader

HEADER_FORMAT = "<BQ50s"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
INFO_FIELD_SIZE = 50
MAX_PAYLOAD_SIZE = 2**64 - 1


def encode_header(command: int, payload_size: int = 0, info: str = "") -> bytes:
    """
    Serialize a header to exactly HEADER_SIZE bytes.

    `info` is truncated to at most INFO_FIELD_SIZE UTF-8 bytes without
    splitting a character, then NUL padded.
    """
    try:
        command = Command(command)
    except ValueError:
        raise ProtocolError(f"Unknown command code: {command!r}") from None
    if not 0 <= payload_size <= MAX_PAYLOAD_SIZE:
        raise ProtocolError(f"Payload size out of range: {payload_size}")

    # struct's "s" format pads to the field width
    return struct.pack(HEADER_FORMAT, command, payload_size, encode_info(info))


def encode_info(info: str) -> bytes:
    """UTF-8 encode, cut back to the last whole character that fits the field."""
    raw = info.encode("utf-8")
    if len(raw) <= INFO_FIELD_SIZE:
        return raw
    return raw[:INFO_FIELD_SIZE].decode("utf-8", errors="ignore").encode("utf-8")


def decode_info(raw: bytes) -> str:
    """Strip trailing NULs; undecodable text becomes an empty string."""
    try:
        return raw.rstrip(b"\x00").decode("utf-8")
    except UnicodeDecodeError:
        return ""


def decode_header(data: bytes) -> FrameHeader | InvalidHeader:
    """Parse a header. Malformed input is reported, never raised."""
    if len(data) < HEADER_SIZE:
        return InvalidHeader(f"expected {HEADER_SIZE} bytes, got {len(data)}")

    command_byte, payload_size, raw_info = struct.unpack_from(HEADER_FORMAT, data)
    try:
        command = Command(command_byte)
    except ValueError:
        return InvalidHeader(f"unknown command {command_byte:#x}", command_byte)

    return FrameHeader(command, payload_size, decode_info(raw_info))


def encode_frame(command: int, info: str = "", payload: bytes = b"") -> bytes:
    """Header plus payload, with the size field set from the payload."""
    return encode_header(command, len(payload), info) + payload
