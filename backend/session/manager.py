"""
Session Manager: runs the pairing session for the single active peer.

Owns the listener, the live connection, the PIN gate, the thumbnail cache
and the asset store. Every state transition goes through one dispatch lock
on the event loop; asset-store work runs in worker tasks so the frame read
loop never waits on disk.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any, BinaryIO

from catalog.cache import ThumbnailCache
from catalog.models import AssetComponent, AssetCounts, AssetType
from catalog.store import AssetStore, build_asset_list, default_component
from config import (
    CHUNK_SIZE,
    LISTEN_HOST,
    LISTEN_PORT,
    MAX_INBOUND_PAYLOAD,
    RETRY_DELAY,
    THUMBNAIL_PREFETCH,
)
from errors import ProtocolError, ResourceError, TransportError
from pairing.pin import PinGate
from protocol.models import Command
from session import machine
from session.machine import (
    CheckPin,
    IssuePin,
    ServeAssetList,
    ServeFile,
    ServeThumbnail,
    StartSync,
    Step,
    Teardown,
)
from session.models import SessionSnapshot, SessionState, SessionView
from transport.connection import FrameConnection
from transport.listener import FrameListener

logger = logging.getLogger(__name__)


async def _read_chunks(stream: BinaryIO, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await asyncio.to_thread(stream.read, chunk_size)
        if not chunk:
            break
        yield chunk


class SessionManager:
    """Drives the protocol for one peer at a time."""

    def __init__(
        self,
        store: AssetStore,
        cache: ThumbnailCache | None = None,
        pin_gate: PinGate | None = None,
        host: str = LISTEN_HOST,
        port: int = LISTEN_PORT,
        chunk_size: int = CHUNK_SIZE,
        retry_delay: float = RETRY_DELAY,
        prefetch: int = THUMBNAIL_PREFETCH,
    ) -> None:
        self._store = store
        self._cache = cache if cache is not None else ThumbnailCache()
        self._pin = pin_gate or PinGate()
        self._pin.on_expired = self._on_pin_expired
        self._pin.on_tick = self._on_pin_tick
        self._listener = FrameListener(self._serve, host, port, chunk_size)
        self._chunk_size = chunk_size
        self._retry_delay = retry_delay
        self._prefetch = prefetch

        self._view = SessionView()
        self._dispatch_lock = asyncio.Lock()
        self._conn: FrameConnection | None = None
        self._workers: set[asyncio.Task] = set()
        self._background: set[asyncio.Task] = set()
        self._thumbnail_jobs: dict[str, asyncio.Task] = {}
        self._dial_task: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._last_dial: tuple[str, int] | None = None
        self._asset_counts = AssetCounts()
        self._event_callbacks: list = []  # async fn(event_type, data)

    # --- Introspection ---

    @property
    def state(self) -> SessionState:
        return self._view.state

    @property
    def view(self) -> SessionView:
        return self._view

    @property
    def port(self) -> int:
        return self._listener.port

    @property
    def cache(self) -> ThumbnailCache:
        return self._cache

    @property
    def store(self) -> AssetStore:
        return self._store

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._view.state,
            peer_name=self._view.peer_name,
            peer_address=self._conn.peer_address if self._conn else None,
            sync_progress=self._view.sync_progress,
            error=self._view.error,
            pin_code=self._pin.code,
            pin_seconds_remaining=self._pin.seconds_remaining,
            asset_counts=self._asset_counts,
            can_retry=self._view.state == SessionState.ERROR,
        )

    # --- Events ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    # --- Lifecycle ---

    async def start(self, listen: bool = True) -> None:
        """Begin accepting peers. With listen=False only dialing is possible."""
        if listen:
            await self._listener.start()
        await self._dispatch(machine.start)

    async def stop(self) -> None:
        self._cancel_retry()
        await self._dispatch(machine.stop)
        await self._listener.stop()
        logger.info("Session manager stopped")

    async def disconnect(self) -> None:
        """Host-initiated disconnect: tell the peer, close, keep searching."""
        await self._dispatch(machine.disconnect)

    async def retry(self, redial: bool = True) -> None:
        """Leave the error state; redial the last peer we dialed, if any."""
        self._cancel_retry()
        await self._dispatch(machine.retry)
        if redial and self._last_dial and self.state == SessionState.SEARCHING:
            host, port = self._last_dial
            try:
                await self.connect_to(host, port)
            except TransportError as e:
                logger.warning(f"Retry to {host}:{port} failed: {e}")

    async def connect_to(self, host: str, port: int) -> None:
        """Dial a peer that is listening, then run the same session over it."""
        if self.state != SessionState.SEARCHING:
            raise RuntimeError(f"Cannot connect while {self.state.value}")

        self._last_dial = (host, port)
        logger.info(f"Connecting to {host}:{port}")
        try:
            conn = await FrameConnection.open(
                host, port, self._chunk_size, MAX_INBOUND_PAYLOAD
            )
        except TransportError as e:
            await self._dispatch(lambda view: machine.on_connection_lost(view, str(e)))
            raise

        if not await self._attach(conn):
            return
        self._dial_task = asyncio.create_task(self._serve_dialed(conn))

    async def refresh_library(self) -> set[str]:
        """Rescan the asset store and drop thumbnails for changed assets."""
        stale = await asyncio.to_thread(self._store.refresh)
        for asset_id in stale:
            self._cache.invalidate(asset_id)
        return stale

    # --- Connection handling ---

    async def _serve(self, conn: FrameConnection) -> None:
        """Listener callback for an inbound peer."""
        if await self._attach(conn):
            await self._read_loop(conn)

    async def _serve_dialed(self, conn: FrameConnection) -> None:
        try:
            await self._read_loop(conn)
        finally:
            await conn.close()

    async def _attach(self, conn: FrameConnection) -> bool:
        async with self._dispatch_lock:
            if self._view.state == SessionState.IDLE:
                logger.info(f"Rejecting {conn.peer_address}: host is stopped")
                await conn.close()
                return False
            if self._conn is not None:
                await self._teardown(Teardown("Superseded by a new connection"))
            self._cancel_retry()
            before = self._view
            await self._apply(machine.on_peer_attached(self._view))
            self._conn = conn
            await self._publish(before)
        logger.info(f"Peer attached from {conn.peer_address}")
        return True

    async def _read_loop(self, conn: FrameConnection) -> None:
        error = None
        try:
            while self._conn is conn:
                frame = await conn.read_frame()
                if frame is None:
                    break
                await self._dispatch(
                    lambda view, frame=frame: machine.on_frame(view, frame), conn
                )
        except TransportError as e:
            error = str(e)
            logger.error(f"Connection error: {e}")

        if self._conn is conn:
            await self._dispatch(
                lambda view: machine.on_connection_lost(view, error), conn
            )

    # --- Dispatch ---

    async def _dispatch(
        self,
        transition: Callable[[SessionView], Step],
        conn: FrameConnection | None = None,
    ) -> None:
        """
        Apply one transition under the lock. Stale connections are ignored.

        Observers get one session_state event per dispatch, carrying the
        view the whole step chain settled on.
        """
        async with self._dispatch_lock:
            if conn is not None and self._conn is not conn:
                return
            before = self._view
            step = transition(self._view)
            try:
                await self._apply(step)
            except TransportError as e:
                logger.error(f"Write failed: {e}")
                await self._apply(machine.on_connection_lost(self._view, str(e)))
            await self._publish(before)

    async def _apply(self, step: Step) -> None:
        if step.ignored:
            logger.info(f"Ignored: {step.ignored}")
            return

        self._set_view(step.view)
        for frame in step.frames:
            if self._conn is not None:
                await self._conn.write_frame(frame.command, frame.info, frame.payload)
                if frame.command == Command.NOTIFICATION:
                    await self._emit("notification", {"message": frame.info})
        for effect in step.effects:
            await self._run_effect(effect)

    def _set_view(self, view: SessionView) -> None:
        previous, self._view = self._view, view
        if previous.state == view.state:
            return
        logger.info(f"Session state: {previous.state.value} -> {view.state.value}")
        if view.state == SessionState.ERROR:
            self._schedule_retry()

    async def _publish(self, before: SessionView) -> None:
        if self._view != before:
            await self._emit("session_state", self.snapshot().model_dump(mode="json"))

    async def _run_effect(self, effect) -> None:
        if isinstance(effect, IssuePin):
            code = self._pin.generate()
            await self._apply(machine.on_pin_issued(self._view, code))
        elif isinstance(effect, CheckPin):
            result = self._pin.verify(effect.candidate)
            await self._apply(machine.on_pin_result(self._view, result))
        elif isinstance(effect, StartSync):
            self._spawn(self._run_sync(self._conn))
        elif isinstance(effect, ServeAssetList):
            self._spawn(self._serve_asset_list(self._conn))
        elif isinstance(effect, ServeThumbnail):
            self._spawn(self._serve_thumbnail(self._conn, effect.asset_id))
        elif isinstance(effect, ServeFile):
            self._spawn(self._serve_file(self._conn, effect))
        elif isinstance(effect, Teardown):
            await self._teardown(effect)

    async def _teardown(self, effect: Teardown) -> None:
        """Cancel in-flight work, release the PIN and close the connection."""
        conn, self._conn = self._conn, None
        current = asyncio.current_task()
        for task in list(self._workers):
            if task is not current:
                task.cancel()
        jobs, self._thumbnail_jobs = self._thumbnail_jobs, {}
        for job in jobs.values():
            job.cancel()
        self._pin.cancel()
        self._asset_counts = AssetCounts()

        if conn is not None:
            if effect.notify_peer and not conn.is_closed:
                try:
                    await conn.write_frame(Command.DISCONNECT)
                except TransportError as e:
                    logger.debug(f"Could not send DISCONNECT: {e}")
            await conn.close()

        logger.info(f"Session torn down: {effect.reason}")
        await self._emit("session_teardown", {"reason": effect.reason})

    # --- Retry ---

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(
            self._retry_delay,
            lambda: self._track(self.retry(redial=False)),
        )

    def _cancel_retry(self) -> None:
        if self._retry_handle:
            self._retry_handle.cancel()
            self._retry_handle = None

    # --- PIN callbacks (called from loop timers) ---

    def _on_pin_expired(self) -> None:
        conn = self._conn
        if conn is not None:
            self._spawn(self._dispatch(machine.on_pin_expired, conn))

    def _on_pin_tick(self, seconds: int) -> None:
        self._track(self._emit("pin_countdown", {"seconds_remaining": seconds}))

    # --- Workers ---

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        """Keep a reference to a timer-driven task until it finishes."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write(
        self, conn: FrameConnection, command: Command, info: str = "", payload: bytes = b""
    ) -> bool:
        try:
            await conn.write_frame(command, info, payload)
        except TransportError as e:
            await self._connection_failed(conn, str(e))
            return False
        if command == Command.NOTIFICATION:
            await self._emit("notification", {"message": info})
        return True

    async def _connection_failed(self, conn: FrameConnection, message: str) -> None:
        logger.error(f"Connection to {conn.peer_address} failed: {message}")
        await self._dispatch(lambda view: machine.on_connection_lost(view, message), conn)

    async def _run_sync(self, conn: FrameConnection) -> None:
        """Count the library and warm the thumbnail cache, reporting progress."""
        await self._dispatch(lambda view: machine.on_sync_progress(view, 0.0), conn)
        try:
            records = await asyncio.to_thread(self._store.list_assets)
        except ResourceError as e:
            logger.error(f"Sync failed: {e}")
            await self._dispatch(
                lambda view: machine.on_sync_failed(view, f"Library unavailable: {e}"), conn
            )
            return
        self._asset_counts = AssetCounts.from_records(records)

        targets = [r.id for r in records if r.type != AssetType.VIDEO][: self._prefetch]
        for index, asset_id in enumerate(targets, start=1):
            try:
                await self._thumbnail(asset_id)
            except ResourceError as e:
                logger.debug(f"Prefetch skipped {asset_id}: {e}")
            progress = index / (len(targets) + 1)
            await self._dispatch(
                lambda view, p=progress: machine.on_sync_progress(view, p), conn
            )

        await self._dispatch(lambda view: machine.on_sync_progress(view, 1.0), conn)
        logger.info(
            f"Sync complete: {self._asset_counts.total} assets "
            f"({self._asset_counts.photos} photos, {self._asset_counts.videos} videos)"
        )

    async def _serve_asset_list(self, conn: FrameConnection) -> None:
        try:
            response = await asyncio.to_thread(build_asset_list, self._store)
        except ResourceError as e:
            logger.error(f"Failed to build asset list: {e}")
            # An empty ASSETS_LIST tells the peer to stop waiting.
            if await self._write(conn, Command.ASSETS_LIST):
                await self._write(conn, Command.NOTIFICATION, "Asset list unavailable")
            return

        self._asset_counts = AssetCounts(
            total=response.total_count,
            photos=response.photos_count,
            videos=response.videos_count,
        )
        payload = response.to_json_bytes()
        logger.info(f"Sending asset list: {response.total_count} assets, {len(payload)} bytes")
        await self._write(conn, Command.ASSETS_LIST, "", payload)

    async def _thumbnail(self, asset_id: str) -> bytes | None:
        """
        Cached thumbnail bytes, generating them at most once at a time.

        Concurrent requests for the same uncached id share one generation.
        """
        data = self._cache.get(asset_id)
        if data is not None:
            return data

        job = self._thumbnail_jobs.get(asset_id)
        if job is None:
            job = asyncio.ensure_future(self._generate_thumbnail(asset_id))
            self._thumbnail_jobs[asset_id] = job

            def forget(done: asyncio.Task, key: str = asset_id) -> None:
                if self._thumbnail_jobs.get(key) is done:
                    del self._thumbnail_jobs[key]

            job.add_done_callback(forget)
        # One waiter being cancelled must not cancel the others.
        return await asyncio.shield(job)

    async def _generate_thumbnail(self, asset_id: str) -> bytes | None:
        data = await asyncio.to_thread(self._store.thumbnail, asset_id)
        if data:
            self._cache.put(asset_id, data)
        return data

    async def _serve_thumbnail(self, conn: FrameConnection, asset_id: str) -> None:
        try:
            data = await self._thumbnail(asset_id)
        except ResourceError as e:
            logger.warning(f"Thumbnail for {asset_id} failed: {e}")
            return
        if not data:
            logger.info(f"No thumbnail for asset: {asset_id}")
            return

        await self._write(conn, Command.THUMBNAIL_DATA, asset_id, data)

    async def _serve_file(self, conn: FrameConnection, request: ServeFile) -> None:
        try:
            record = await asyncio.to_thread(self._store.get_asset, request.asset_id)
            if record is None:
                logger.info(f"Asset not found: {request.asset_id}")
                return
            component = request.component or default_component(record)
            if component == AssetComponent.MOTION and record.type != AssetType.LIVE_PHOTO:
                logger.info(f"Asset {request.asset_id} has no motion component")
                return
            content = await asyncio.to_thread(
                self._store.open_original, request.asset_id, component
            )
        except ResourceError as e:
            logger.warning(f"File for {request.asset_id} failed: {e}")
            return
        if content is None:
            logger.info(f"No {component.value} data for asset: {request.asset_id}")
            return

        logger.info(
            f"Streaming {component.value} of {record.filename} ({content.size} bytes)"
        )
        try:
            await conn.write_stream(
                Command.FILE_DATA,
                request.request_info,
                content.size,
                _read_chunks(content.stream, self._chunk_size),
            )
        except (ProtocolError, TransportError) as e:
            await self._connection_failed(conn, str(e))
        finally:
            content.stream.close()
