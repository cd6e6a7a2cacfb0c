"""Exception taxonomy shared by the protocol engine."""


class MediaBridgeError(Exception):
    """Base class for every error raised by the session engine."""


class ProtocolError(MediaBridgeError):
    """A frame could not be encoded, or a payload broke its declared size."""


class TransportError(MediaBridgeError):
    """The byte stream to the peer failed; fatal for the current session."""


class ResourceError(MediaBridgeError):
    """The asset store could not satisfy a lookup or read."""

    def __init__(self, asset_id: str | None, message: str) -> None:
        super().__init__(message)
        self.asset_id = asset_id
