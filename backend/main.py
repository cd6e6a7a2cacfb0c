"""
MediaBridge: FastAPI application entry point.

Starts the session listener and mDNS discovery on startup, serves the
REST API and the WebSocket event stream for the host UI.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import ConnectionManager
from catalog.cache import ThumbnailCache
from catalog.library import DirectoryAssetStore
from config import API_HOST, API_PORT, DEVICE_NAME, LIBRARY_DIR
from discovery.service import DiscoveryService
from errors import ResourceError
from session.manager import SessionManager

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
asset_store = DirectoryAssetStore(LIBRARY_DIR)
session_manager = SessionManager(asset_store, ThumbnailCache())
discovery_service = DiscoveryService(DEVICE_NAME)
ws_manager = ConnectionManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info("Starting MediaBridge services...")

    try:
        # Wire up event broadcasting
        session_manager.on_event(ws_manager.handle_event)
        discovery_service.on_peer_change(ws_manager.handle_peer_event)

        try:
            await asyncio.to_thread(asset_store.refresh)
        except ResourceError as e:
            logger.warning(f"Library not loaded: {e}")

        await session_manager.start()

        # Advertise the port the listener actually bound
        discovery_service.port = session_manager.port
        await discovery_service.start()

        logger.info(
            f"MediaBridge ready: "
            f"API {API_HOST}:{API_PORT}, "
            f"peer port {session_manager.port}, "
            f"library {asset_store.root}"
        )

        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down MediaBridge services...")
        await discovery_service.stop()
        await session_manager.stop()


# --- FastAPI app ---
app = FastAPI(
    title="MediaBridge",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173", "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(session_manager, discovery_service)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await ws_manager.connect(websocket)
    try:
        while True:
            # Keep the connection alive; the UI only listens
            await websocket.receive_text()
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)


def run() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
