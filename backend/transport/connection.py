"""
Framed duplex connection over an asyncio stream pair.

The same class serves the listening side and the dialing side. Payloads
move in bounded chunks in both directions: reads accumulate at most
CHUNK_SIZE bytes per call, and writes drain after every chunk so a slow
reader applies backpressure to the sender.
"""

import asyncio
import logging
from collections.abc import AsyncIterable

from config import CHUNK_SIZE, CLOSE_TIMEOUT, CONNECT_TIMEOUT
from errors import ProtocolError, TransportError
from protocol.codec import HEADER_SIZE, decode_header, encode_header
from protocol.models import Frame, InvalidHeader

logger = logging.getLogger(__name__)


class FrameConnection:
    """One live byte stream to a peer, spoken in frames."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        chunk_size: int = CHUNK_SIZE,
        max_payload: int | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._chunk_size = chunk_size
        self._max_payload = max_payload
        self._write_lock = asyncio.Lock()
        self._closed = False

        peer = writer.get_extra_info("peername")
        self.peer_address = f"{peer[0]}:{peer[1]}" if peer else "unknown"

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        chunk_size: int = CHUNK_SIZE,
        max_payload: int | None = None,
    ) -> "FrameConnection":
        """Dial a listening peer."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=CONNECT_TIMEOUT
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"Could not connect to {host}:{port}: {e}") from e
        return cls(reader, writer, chunk_size, max_payload)

    @property
    def is_closed(self) -> bool:
        return self._closed

    # --- Reading ---

    async def read_frame(self) -> Frame | None:
        """
        Read the next complete frame.

        Invalid headers are logged and skipped. Returns None once the peer
        has closed the stream, including a close in the middle of a frame.
        """
        while True:
            raw = await self._read_exactly(HEADER_SIZE)
            if raw is None:
                return None

            header = decode_header(raw)
            if isinstance(header, InvalidHeader):
                logger.warning(
                    f"Skipping invalid header from {self.peer_address}: {header.reason}"
                )
                continue

            payload = b""
            if self._max_payload is not None and header.payload_size > self._max_payload:
                logger.warning(
                    f"Discarding {header.payload_size}-byte {header.command.name} payload "
                    f"from {self.peer_address} (limit {self._max_payload})"
                )
                if not await self._discard(header.payload_size):
                    return None
            elif header.payload_size > 0:
                payload = await self._read_payload(header.payload_size)
                if payload is None:
                    return None

            logger.debug(
                f"Received {header.command.name} from {self.peer_address}, "
                f"size: {header.payload_size}, info: {header.info!r}"
            )
            return Frame(header.command, header.info, payload)

    async def _read_payload(self, size: int) -> bytes | None:
        chunks: list[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = await self._read_exactly(min(remaining, self._chunk_size))
            if chunk is None:
                return None
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    async def _discard(self, size: int) -> bool:
        remaining = size
        while remaining > 0:
            chunk = await self._read_exactly(min(remaining, self._chunk_size))
            if chunk is None:
                return False
            remaining -= len(chunk)
        return True

    async def _read_exactly(self, n: int) -> bytes | None:
        try:
            return await self._reader.readexactly(n)
        except asyncio.IncompleteReadError:
            return None
        except OSError as e:
            if self._closed:
                return None
            raise TransportError(f"Read from {self.peer_address} failed: {e}") from e

    # --- Writing ---

    async def write_frame(self, command: int, info: str = "", payload: bytes = b"") -> None:
        """Write one frame; the header and every chunk go out before any other frame."""
        async with self._write_lock:
            self._check_writable()
            try:
                await self._send(encode_header(command, len(payload), info))
                view = memoryview(payload)
                for offset in range(0, len(view), self._chunk_size):
                    await self._send(view[offset:offset + self._chunk_size])
            except asyncio.CancelledError:
                self._mark_broken(command)
                raise

    async def write_stream(
        self,
        command: int,
        info: str,
        size: int,
        chunks: AsyncIterable[bytes],
    ) -> None:
        """
        Write one frame whose payload comes from an async chunk source.

        The source must yield exactly `size` bytes. A mismatch raises
        ProtocolError and leaves the connection unusable for further frames.
        """
        async with self._write_lock:
            self._check_writable()
            sent = 0
            try:
                await self._send(encode_header(command, size, info))
                async for chunk in chunks:
                    sent += len(chunk)
                    if sent > size:
                        break
                    view = memoryview(chunk)
                    for offset in range(0, len(view), self._chunk_size):
                        await self._send(view[offset:offset + self._chunk_size])
            except asyncio.CancelledError:
                self._mark_broken(command)
                raise

            if sent != size:
                self._mark_broken(command)
                raise ProtocolError(
                    f"{command!r} payload declared {size} bytes but source produced "
                    f"{'more' if sent > size else sent}"
                )

    async def _send(self, data: bytes | memoryview) -> None:
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            self._closed = True
            raise TransportError(f"Write to {self.peer_address} failed: {e}") from e

    def _check_writable(self) -> None:
        if self._closed:
            raise TransportError(f"Connection to {self.peer_address} is closed")

    def _mark_broken(self, command: int) -> None:
        # A partially written frame cannot be followed by another header.
        logger.info(f"Aborted {command!r} write to {self.peer_address}")
        self._closed = True

    # --- Teardown ---

    async def close(self) -> None:
        """Flush whatever is already buffered, then close. Safe to call twice."""
        self._closed = True
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Connection to {self.peer_address} did not flush, aborting")
            self._writer.transport.abort()
        except OSError as e:
            logger.debug(f"Error while closing {self.peer_address}: {e}")
        logger.info(f"Connection to {self.peer_address} closed")
