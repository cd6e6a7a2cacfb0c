"""
Directory-backed asset store.

Treats a folder tree as the media library: image files are photos, movie
files are videos, and an image plus a movie sharing a file stem in the same
folder form a live photo. Thumbnails are rendered with Pillow.
"""

import io
import logging
import os
import struct
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from catalog.models import AssetComponent, AssetContent, AssetRecord, AssetType
from config import LIBRARY_DIR, THUMBNAIL_JPEG_QUALITY, THUMBNAIL_SIZE
from errors import ResourceError

logger = logging.getLogger(__name__)

PHOTO_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".heic", ".heif", ".gif", ".webp", ".tif", ".tiff", ".bmp",
}
VIDEO_EXTENSIONS = {".mov", ".mp4", ".m4v", ".3gp"}


@dataclass(frozen=True)
class _Entry:
    record: AssetRecord
    primary: Path
    motion: Path | None
    signature: tuple[float, int]  # (mtime, size) of every file, folded


# --- QuickTime / MP4 probing ---

def _iter_boxes(f, start: int, end: int):
    """Yield (kind, payload_start, box_end) for ISO-BMFF boxes in [start, end)."""
    pos = start
    while pos + 8 <= end:
        f.seek(pos)
        size, kind = struct.unpack(">I4s", f.read(8))
        header_len = 8
        if size == 1:
            size = struct.unpack(">Q", f.read(8))[0]
            header_len = 16
        elif size == 0:
            size = end - pos
        if size < header_len:
            return
        yield kind, pos + header_len, pos + size
        pos += size


def probe_movie(path: Path) -> tuple[float | None, int, int]:
    """Read (duration_seconds, width, height) from a movie's moov box."""
    duration = None
    width = height = 0
    with open(path, "rb") as f:
        file_end = f.seek(0, os.SEEK_END)
        for kind, start, end in _iter_boxes(f, 0, file_end):
            if kind != b"moov":
                continue
            for child, c_start, c_end in _iter_boxes(f, start, end):
                if child == b"mvhd":
                    f.seek(c_start)
                    body = f.read(32)
                    if body[0] == 1:
                        timescale, length = struct.unpack(">IQ", body[20:32])
                    else:
                        timescale, length = struct.unpack(">II", body[12:20])
                    if timescale:
                        duration = round(length / timescale, 3)
                elif child == b"trak" and not width:
                    width, height = _track_dimensions(f, c_start, c_end)
            break
    return duration, width, height


def _track_dimensions(f, start: int, end: int) -> tuple[int, int]:
    for kind, t_start, _ in _iter_boxes(f, start, end):
        if kind != b"tkhd":
            continue
        f.seek(t_start)
        body = f.read(96)
        offset = 88 if body[0] == 1 else 76
        w, h = struct.unpack(">II", body[offset:offset + 8])
        return w >> 16, h >> 16  # 16.16 fixed point
    return 0, 0


# --- Store ---

class DirectoryAssetStore:
    """Serves a directory tree as a media library."""

    def __init__(
        self,
        root: str | Path = LIBRARY_DIR,
        thumbnail_size: int = THUMBNAIL_SIZE,
        jpeg_quality: int = THUMBNAIL_JPEG_QUALITY,
    ) -> None:
        self._root = Path(root)
        self._thumbnail_size = thumbnail_size
        self._jpeg_quality = jpeg_quality
        self._entries: dict[str, _Entry] = {}

    @property
    def root(self) -> Path:
        return self._root

    def refresh(self) -> set[str]:
        """Rescan the directory. Returns ids that changed or disappeared."""
        if not self._root.is_dir():
            raise ResourceError(None, f"Library directory not found: {self._root}")

        entries: dict[str, _Entry] = {}
        for folder, dirs, files in os.walk(self._root):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for entry in self._group_folder(Path(folder), files):
                entries[entry.record.id] = entry

        stale = {
            asset_id
            for asset_id, old in self._entries.items()
            if asset_id not in entries or entries[asset_id].signature != old.signature
        }
        self._entries = entries
        logger.info(
            f"Scanned {self._root}: {len(entries)} assets, {len(stale)} changed"
        )
        return stale

    def list_assets(self) -> list[AssetRecord]:
        records = [entry.record for entry in self._entries.values()]
        records.sort(key=lambda r: r.creation_date, reverse=True)
        return records

    def get_asset(self, asset_id: str) -> AssetRecord | None:
        entry = self._entries.get(asset_id)
        return entry.record if entry else None

    def size_of(self, asset_id: str) -> int:
        entry = self._lookup(asset_id)
        try:
            total = entry.primary.stat().st_size
            if entry.motion:
                total += entry.motion.stat().st_size
        except OSError as e:
            raise ResourceError(asset_id, f"Cannot stat {entry.primary.name}: {e}") from e
        return total

    def thumbnail(self, asset_id: str) -> bytes | None:
        entry = self._entries.get(asset_id)
        if entry is None or entry.record.type == AssetType.VIDEO:
            return None

        try:
            with Image.open(entry.primary) as image:
                image = ImageOps.exif_transpose(image)
                image.thumbnail((self._thumbnail_size, self._thumbnail_size))
                buffer = io.BytesIO()
                image.convert("RGB").save(buffer, format="JPEG", quality=self._jpeg_quality)
        except (OSError, UnidentifiedImageError) as e:
            raise ResourceError(asset_id, f"Cannot render thumbnail: {e}") from e
        return buffer.getvalue()

    def open_original(
        self, asset_id: str, component: AssetComponent
    ) -> AssetContent | None:
        entry = self._entries.get(asset_id)
        if entry is None:
            return None

        if component == AssetComponent.MOTION:
            path = entry.motion
        elif component == AssetComponent.STILL and entry.record.type != AssetType.LIVE_PHOTO:
            path = None
        else:
            path = entry.primary
        if path is None:
            return None

        try:
            stream = open(path, "rb")
            size = os.fstat(stream.fileno()).st_size
        except OSError as e:
            raise ResourceError(asset_id, f"Cannot open {path.name}: {e}") from e
        return AssetContent(size=size, stream=stream)

    # --- Scanning helpers ---

    def _lookup(self, asset_id: str) -> _Entry:
        entry = self._entries.get(asset_id)
        if entry is None:
            raise ResourceError(asset_id, f"Unknown asset: {asset_id}")
        return entry

    def _group_folder(self, folder: Path, files: list[str]) -> list[_Entry]:
        stills: dict[str, Path] = {}
        movies: dict[str, Path] = {}
        for name in sorted(files):
            if name.startswith("."):
                continue
            path = folder / name
            ext = path.suffix.lower()
            if ext in PHOTO_EXTENSIONS:
                stills.setdefault(path.stem.lower(), path)
            elif ext in VIDEO_EXTENSIONS:
                movies.setdefault(path.stem.lower(), path)

        entries = []
        for stem, still in stills.items():
            entry = self._build_entry(still, movies.pop(stem, None))
            if entry:
                entries.append(entry)
        for movie in movies.values():
            entry = self._build_entry(movie, None)
            if entry:
                entries.append(entry)
        return entries

    def _build_entry(self, primary: Path, motion: Path | None) -> _Entry | None:
        try:
            stat = primary.stat()
            signature = (stat.st_mtime, stat.st_size)
            if motion:
                m_stat = motion.stat()
                signature = (max(stat.st_mtime, m_stat.st_mtime), stat.st_size + m_stat.st_size)
        except OSError as e:
            logger.warning(f"Skipping unreadable file {primary}: {e}")
            return None

        is_movie = primary.suffix.lower() in VIDEO_EXTENSIONS
        if is_movie:
            asset_type = AssetType.VIDEO
        elif motion:
            asset_type = AssetType.LIVE_PHOTO
        else:
            asset_type = AssetType.PHOTO

        duration = None
        width = height = 0
        try:
            if is_movie:
                duration, width, height = probe_movie(primary)
            else:
                with Image.open(primary) as image:
                    width, height = image.size
                if motion:
                    duration, _, _ = probe_movie(motion)
        except (OSError, UnidentifiedImageError, struct.error, IndexError) as e:
            logger.debug(f"Could not probe {primary.name}: {e}")

        relative = primary.relative_to(self._root).as_posix()
        record = AssetRecord(
            id=str(uuid.uuid5(uuid.NAMESPACE_URL, relative)),
            filename=primary.name,
            type=asset_type,
            width=width,
            height=height,
            duration_seconds=duration,
            creation_date=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            is_live_photo=asset_type == AssetType.LIVE_PHOTO,
        )
        return _Entry(record, primary, motion, signature)
