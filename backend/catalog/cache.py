"""Bounded LRU cache of encoded thumbnails keyed by asset id."""

import logging
from collections import OrderedDict

from config import THUMBNAIL_CACHE_MAX_BYTES, THUMBNAIL_CACHE_MAX_ENTRIES

logger = logging.getLogger(__name__)


class ThumbnailCache:
    """
    Least-recently-used cache with two ceilings: entry count and total bytes.

    Eviction runs until both limits hold. Not thread-safe; it is only touched
    from the event loop.
    """

    def __init__(
        self,
        max_entries: int = THUMBNAIL_CACHE_MAX_ENTRIES,
        max_bytes: int = THUMBNAIL_CACHE_MAX_BYTES,
    ) -> None:
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._entries: OrderedDict[str, bytes] = OrderedDict()
        self._total_bytes = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, asset_id: str) -> bool:
        return asset_id in self._entries

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def get(self, asset_id: str) -> bytes | None:
        """Return cached bytes and mark them recently used, or None on a miss."""
        data = self._entries.get(asset_id)
        if data is not None:
            self._entries.move_to_end(asset_id)
        return data

    def put(self, asset_id: str, data: bytes) -> None:
        if len(data) > self._max_bytes:
            logger.debug(f"Thumbnail for {asset_id} exceeds cache size, not cached")
            self.invalidate(asset_id)
            return

        self.invalidate(asset_id)
        self._entries[asset_id] = data
        self._total_bytes += len(data)

        while (
            len(self._entries) > self._max_entries
            or self._total_bytes > self._max_bytes
        ):
            evicted_id, evicted = self._entries.popitem(last=False)
            self._total_bytes -= len(evicted)
            logger.debug(f"Evicted thumbnail {evicted_id}")

    def invalidate(self, asset_id: str) -> bool:
        data = self._entries.pop(asset_id, None)
        if data is None:
            return False
        self._total_bytes -= len(data)
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._total_bytes = 0
