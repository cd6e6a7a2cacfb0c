"""TCP listener that keeps at most one live peer connection."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from config import CHUNK_SIZE, LISTEN_HOST, LISTEN_PORT, MAX_INBOUND_PAYLOAD
from transport.connection import FrameConnection

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[FrameConnection], Awaitable[None]]


class FrameListener:
    """
    Accepts inbound peers and hands each one to `on_connection`.

    A new connection immediately supersedes the current one: the old stream
    is closed before the new one is handed over.
    """

    def __init__(
        self,
        on_connection: ConnectionHandler,
        host: str = LISTEN_HOST,
        port: int = LISTEN_PORT,
        chunk_size: int = CHUNK_SIZE,
        max_payload: int | None = MAX_INBOUND_PAYLOAD,
    ) -> None:
        self._on_connection = on_connection
        self._host = host
        self._port = port
        self._chunk_size = chunk_size
        self._max_payload = max_payload
        self._server: asyncio.Server | None = None
        self._active: FrameConnection | None = None

    @property
    def port(self) -> int:
        """The bound port (resolved after start when configured as 0)."""
        return self._port

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def active_connection(self) -> FrameConnection | None:
        return self._active

    async def start(self) -> None:
        if self._server:
            return
        self._server = await asyncio.start_server(
            self._handle_client, self._host, self._port
        )
        self._port = self._server.sockets[0].getsockname()[1]
        logger.info(f"Listening for peers on port {self._port}")

    async def stop(self) -> None:
        if not self._server:
            return
        server, self._server = self._server, None
        server.close()
        if self._active:
            await self._active.close()
        await server.wait_closed()
        logger.info("Listener stopped")

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        conn = FrameConnection(reader, writer, self._chunk_size, self._max_payload)
        logger.info(f"New connection from {conn.peer_address}")

        previous, self._active = self._active, conn
        if previous is not None:
            logger.info(f"Superseding connection from {previous.peer_address}")
            await previous.close()

        try:
            await self._on_connection(conn)
        finally:
            if self._active is conn:
                self._active = None
            await conn.close()
