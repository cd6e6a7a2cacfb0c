"""Pydantic models for library assets, as stored and as exchanged."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import BinaryIO

from pydantic import BaseModel


class AssetType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    LIVE_PHOTO = "live_photo"


class AssetComponent(str, Enum):
    """Which byte payload of an asset to stream."""
    ORIGINAL = "original"
    STILL = "still"  # live photo image
    MOTION = "motion"  # live photo paired video


def format_creation_date(value: datetime) -> str:
    """ISO-8601 in UTC with second precision, e.g. 2024-05-01T09:30:00Z."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AssetMetadata(BaseModel):
    """One library item as sent to the peer. Field names are a wire contract."""
    id: str
    filename: str
    type: AssetType
    size_bytes: int
    width: int
    height: int
    duration_seconds: float | None = None
    creation_date: str
    is_live_photo: bool


class AssetRecord(BaseModel):
    """
    Cheap metadata from the asset store.

    Size is deliberately absent: it can cost I/O, so the store answers it
    through a separate size_of() query.
    """
    id: str
    filename: str
    type: AssetType
    width: int = 0
    height: int = 0
    duration_seconds: float | None = None
    creation_date: datetime
    is_live_photo: bool = False

    def to_metadata(self, size_bytes: int) -> AssetMetadata:
        return AssetMetadata(
            id=self.id,
            filename=self.filename,
            type=self.type,
            size_bytes=size_bytes,
            width=self.width,
            height=self.height,
            duration_seconds=(
                None if self.type == AssetType.PHOTO else self.duration_seconds
            ),
            creation_date=format_creation_date(self.creation_date),
            is_live_photo=self.is_live_photo,
        )


class AssetListResponse(BaseModel):
    """Payload of ASSETS_LIST. Aggregates always match the asset sequence."""
    assets: list[AssetMetadata]
    total_count: int
    photos_count: int
    videos_count: int
    total_size_bytes: int

    @classmethod
    def from_assets(cls, assets: list[AssetMetadata]) -> "AssetListResponse":
        unique: list[AssetMetadata] = []
        seen: set[str] = set()
        for asset in assets:
            if asset.id in seen:
                continue
            seen.add(asset.id)
            unique.append(asset)

        return cls(
            assets=unique,
            total_count=len(unique),
            photos_count=sum(
                1 for a in unique if a.type in (AssetType.PHOTO, AssetType.LIVE_PHOTO)
            ),
            videos_count=sum(1 for a in unique if a.type == AssetType.VIDEO),
            total_size_bytes=sum(a.size_bytes for a in unique),
        )

    def to_json_bytes(self) -> bytes:
        # Optional fields are omitted rather than sent as null.
        return self.model_dump_json(exclude_none=True).encode("utf-8")


class AssetCounts(BaseModel):
    """Library totals shown while a session is live."""
    total: int = 0
    photos: int = 0
    videos: int = 0

    @classmethod
    def from_records(cls, records: list[AssetRecord]) -> "AssetCounts":
        videos = sum(1 for r in records if r.type == AssetType.VIDEO)
        return cls(total=len(records), photos=len(records) - videos, videos=videos)


@dataclass
class AssetContent:
    """An open original: its exact byte size and a readable binary stream."""
    size: int
    stream: BinaryIO
