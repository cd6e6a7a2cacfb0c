"""REST API routes for MediaBridge."""

import asyncio
import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from catalog.store import build_asset_list
from config import LIBRARY_DIR, PIN_MAX_ATTEMPTS, PIN_TIMEOUT, SERVICE_TYPE
from errors import ResourceError, TransportError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_session_manager = None
_discovery_service = None


def init_routes(session_manager, discovery_service) -> None:
    """Inject service dependencies into the routes module."""
    global _session_manager, _discovery_service
    _session_manager = session_manager
    _discovery_service = discovery_service


# --- Session ---

@router.get("/session")
async def get_session():
    """Return the current session snapshot."""
    return _session_manager.snapshot().model_dump(mode="json")


@router.post("/session/start")
async def start_session():
    await _session_manager.start()
    return {"state": _session_manager.state.value}


@router.post("/session/stop")
async def stop_session():
    await _session_manager.stop()
    return {"state": _session_manager.state.value}


@router.post("/session/disconnect")
async def disconnect_session():
    await _session_manager.disconnect()
    return {"state": _session_manager.state.value}


@router.post("/session/retry")
async def retry_session():
    await _session_manager.retry()
    return {"state": _session_manager.state.value}


class ConnectBody(BaseModel):
    host: str
    port: int = Field(ge=1, le=65535)


@router.post("/session/connect")
async def connect_session(body: ConnectBody):
    """Dial a peer directly, e.g. one picked from the discovered list."""
    try:
        await _session_manager.connect_to(body.host, body.port)
    except RuntimeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TransportError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"state": _session_manager.state.value}


# --- Discovery ---

@router.get("/peers")
async def list_peers():
    """Return list of discovered peers."""
    peers = await _discovery_service.get_peers()
    return {"peers": [p.model_dump() for p in peers]}


# --- Library ---

@router.get("/library")
async def get_library():
    """Return the asset list exactly as a paired peer would receive it."""
    try:
        response = await asyncio.to_thread(build_asset_list, _session_manager.store)
    except ResourceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return response.model_dump(mode="json", exclude_none=True)


@router.post("/library/rescan")
async def rescan_library():
    try:
        changed = await _session_manager.refresh_library()
    except ResourceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"changed": len(changed), "cached_thumbnails": len(_session_manager.cache)}


# --- Settings ---

@router.get("/settings")
async def get_settings():
    return {
        "device_name": _discovery_service.device_name,
        "service_type": SERVICE_TYPE,
        "listen_port": _session_manager.port,
        "library_dir": str(getattr(_session_manager.store, "root", LIBRARY_DIR)),
        "pin_timeout": PIN_TIMEOUT,
        "pin_max_attempts": PIN_MAX_ATTEMPTS,
    }
