"""
Asset store interface consumed by the session engine.

Every method may block on disk or network I/O; callers run them on a worker
thread. Lookups for unknown ids return None. Failures raise ResourceError.
"""

from typing import Protocol

from catalog.models import (
    AssetComponent,
    AssetContent,
    AssetListResponse,
    AssetRecord,
    AssetType,
)


class AssetStore(Protocol):
    def list_assets(self) -> list[AssetRecord]:
        """Metadata snapshot of the whole library, newest first."""
        ...

    def get_asset(self, asset_id: str) -> AssetRecord | None:
        ...

    def size_of(self, asset_id: str) -> int:
        """Total byte size of every component of the asset."""
        ...

    def thumbnail(self, asset_id: str) -> bytes | None:
        """Encoded thumbnail image, or None if the asset has none."""
        ...

    def open_original(
        self, asset_id: str, component: AssetComponent
    ) -> AssetContent | None:
        """Open one component for streaming. The caller closes the stream."""
        ...

    def refresh(self) -> set[str]:
        """Re-read the library; return ids whose content changed or vanished."""
        ...


def build_asset_list(store: AssetStore) -> AssetListResponse:
    """Snapshot the library and size each asset. Blocking."""
    records = store.list_assets()
    return AssetListResponse.from_assets(
        [record.to_metadata(store.size_of(record.id)) for record in records]
    )


def default_component(record: AssetRecord) -> AssetComponent:
    if record.type == AssetType.LIVE_PHOTO:
        return AssetComponent.STILL
    return AssetComponent.ORIGINAL
