"""Application-wide configuration constants."""

import os
import platform
from pathlib import Path

# --- Identity ---
APP_ID = "mediabridge-v1"
DEVICE_NAME = os.environ.get("MEDIABRIDGE_DEVICE_NAME", platform.node())
UNKNOWN_PEER_NAME = "Unknown PC"

# --- Networking ---
API_HOST = "0.0.0.0"
API_PORT = int(os.environ.get("MEDIABRIDGE_API_PORT", "8765"))
LISTEN_HOST = "0.0.0.0"
LISTEN_PORT = int(os.environ.get("MEDIABRIDGE_PORT", "2347"))
SERVICE_TYPE = "_mediabridge._tcp.local."
DISCOVERY_RESOLVE_TIMEOUT = 3  # seconds
CONNECT_TIMEOUT = 10  # seconds
CLOSE_TIMEOUT = 5  # seconds to flush buffered bytes before aborting

# --- Wire protocol ---
CHUNK_SIZE = 65536  # 64 KB
MAX_INBOUND_PAYLOAD = 64 * 1024  # peer-to-host commands carry no payload
MOTION_SUFFIX = "#motion"

# --- Pairing ---
PIN_LENGTH = 4
PIN_TIMEOUT = 30  # seconds
PIN_MAX_ATTEMPTS = 3

# --- Session ---
RETRY_DELAY = 2  # seconds before an errored session falls back to searching
THUMBNAIL_PREFETCH = 24  # thumbnails warmed into the cache while syncing

# --- Thumbnails ---
THUMBNAIL_CACHE_MAX_ENTRIES = 500
THUMBNAIL_CACHE_MAX_BYTES = 50 * 1024 * 1024  # 50 MB
THUMBNAIL_SIZE = 200  # pixels, longest side
THUMBNAIL_JPEG_QUALITY = 70

# --- Storage ---
LIBRARY_DIR = os.environ.get(
    "MEDIABRIDGE_LIBRARY",
    str(Path.home() / "Pictures"),
)
