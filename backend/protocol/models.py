"""Wire protocol message types."""

from enum import IntEnum
from typing import NamedTuple


class Command(IntEnum):
    """Command codes. The numeric values are a contract with the peer."""
    CONNECT = 1
    PIN_CHALLENGE = 2
    VERIFY_PIN = 3
    PIN_OK = 4
    PIN_FAIL = 5
    LIST_ASSETS = 6
    ASSETS_LIST = 7
    GET_THUMBNAIL = 8
    THUMBNAIL_DATA = 9
    GET_FULL_FILE = 10
    FILE_DATA = 11
    DISCONNECT = 12
    NOTIFICATION = 13


class FrameHeader(NamedTuple):
    command: Command
    payload_size: int
    info: str


class InvalidHeader(NamedTuple):
    """A header that failed to decode. Never acted upon."""
    reason: str
    command_byte: int | None = None


class Frame(NamedTuple):
    """One decoded header plus its complete payload."""
    command: Command
    info: str = ""
    payload: bytes = b""
