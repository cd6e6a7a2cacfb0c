import struct

import pytest

from errors import ProtocolError
from protocol.codec import (
    HEADER_SIZE,
    INFO_FIELD_SIZE,
    decode_header,
    decode_info,
    encode_frame,
    encode_header,
)
from protocol.models import Command, FrameHeader, InvalidHeader


def test_header_is_59_bytes():
    assert HEADER_SIZE == 59
    assert len(encode_header(Command.CONNECT)) == HEADER_SIZE


@pytest.mark.parametrize("command", list(Command))
def test_header_roundtrip_every_command(command):
    raw = encode_header(command, 1234, "Workstation-7")
    assert decode_header(raw) == FrameHeader(command, 1234, "Workstation-7")


def test_layout_is_little_endian():
    raw = encode_header(Command.FILE_DATA, 0x0102030405060708, "abc")
    assert raw[0] == 11
    assert raw[1:9] == bytes([8, 7, 6, 5, 4, 3, 2, 1])
    assert raw[9:12] == b"abc"
    assert raw[12:] == b"\x00" * (INFO_FIELD_SIZE - 3)


def test_long_info_truncated_to_field():
    header = decode_header(encode_header(Command.NOTIFICATION, 0, "x" * 80))
    assert header.info == "x" * INFO_FIELD_SIZE


def test_truncation_keeps_whole_characters():
    # 18 three-byte characters; the 17th would straddle byte 50
    name = "東京" * 9
    raw = encode_header(Command.CONNECT, 0, name)
    assert raw[9 + 48:] == b"\x00\x00"
    header = decode_header(raw)
    assert header.info == name[:16]


def test_unknown_command_rejected_on_encode():
    with pytest.raises(ProtocolError):
        encode_header(99)


def test_payload_size_out_of_range():
    with pytest.raises(ProtocolError):
        encode_header(Command.FILE_DATA, -1)
    with pytest.raises(ProtocolError):
        encode_header(Command.FILE_DATA, 2**64)


def test_short_header_is_invalid():
    result = decode_header(b"\x01\x00\x00")
    assert isinstance(result, InvalidHeader)
    assert result.command_byte is None


def test_unknown_command_byte_is_invalid():
    raw = struct.pack("<BQ50s", 0xEE, 0, b"")
    result = decode_header(raw)
    assert isinstance(result, InvalidHeader)
    assert result.command_byte == 0xEE


def test_undecodable_info_becomes_empty():
    raw = struct.pack("<BQ50s", Command.NOTIFICATION, 0, b"\xff\xfe\xfd")
    assert decode_header(raw).info == ""
    assert decode_info(b"ok\x00\x00") == "ok"


def test_encode_frame_sets_size_from_payload():
    data = encode_frame(Command.THUMBNAIL_DATA, "asset-1", b"\xff\xd8jpeg")
    header = decode_header(data[:HEADER_SIZE])
    assert header.payload_size == 6
    assert data[HEADER_SIZE:] == b"\xff\xd8jpeg"
