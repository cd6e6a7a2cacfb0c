import io
import os
import struct

import pytest
from PIL import Image

from catalog.library import DirectoryAssetStore, probe_movie
from catalog.models import AssetComponent, AssetType
from errors import ResourceError


def _box(kind: bytes, payload: bytes) -> bytes:
    return struct.pack(">I4s", 8 + len(payload), kind) + payload


def _write_movie(path, seconds=3, width=1920, height=1080):
    """Smallest QuickTime file the probe understands: ftyp, moov(mvhd, trak(tkhd)), mdat."""
    mvhd = bytes(12) + struct.pack(">II", 600, seconds * 600) + bytes(80)
    tkhd = bytes(76) + struct.pack(">II", width << 16, height << 16)
    moov = _box(b"moov", _box(b"mvhd", mvhd) + _box(b"trak", _box(b"tkhd", tkhd)))
    path.write_bytes(_box(b"ftyp", b"qt  " + bytes(4)) + moov + _box(b"mdat", bytes(64)))


def _write_image(path, size=(640, 480), color=(200, 30, 30)):
    Image.new("RGB", size, color).save(path, format="JPEG")


@pytest.fixture
def library(tmp_path):
    _write_image(tmp_path / "IMG_0001.jpg")
    _write_image(tmp_path / "IMG_0002.jpg", size=(300, 400))
    _write_movie(tmp_path / "IMG_0002.mov", seconds=2)
    (tmp_path / "trip").mkdir()
    _write_movie(tmp_path / "trip" / "clip.mp4", seconds=12)
    _write_image(tmp_path / ".hidden.jpg")
    (tmp_path / "notes.txt").write_text("not media")
    store = DirectoryAssetStore(tmp_path)
    store.refresh()
    return store


def _by_name(store, filename):
    return next(r for r in store.list_assets() if r.filename == filename)


def test_probe_movie_reads_duration_and_size(tmp_path):
    path = tmp_path / "m.mov"
    _write_movie(path, seconds=3, width=1280, height=720)
    assert probe_movie(path) == (3.0, 1280, 720)


def test_scan_classifies_assets(library):
    records = library.list_assets()
    assert sorted(r.filename for r in records) == ["IMG_0001.jpg", "IMG_0002.jpg", "clip.mp4"]

    photo = _by_name(library, "IMG_0001.jpg")
    assert photo.type == AssetType.PHOTO
    assert (photo.width, photo.height) == (640, 480)

    live = _by_name(library, "IMG_0002.jpg")
    assert live.type == AssetType.LIVE_PHOTO
    assert live.is_live_photo
    assert live.duration_seconds == 2.0

    video = _by_name(library, "clip.mp4")
    assert video.type == AssetType.VIDEO
    assert (video.width, video.height, video.duration_seconds) == (1920, 1080, 12.0)


def test_ids_are_stable_across_scans(library):
    before = {r.filename: r.id for r in library.list_assets()}
    assert library.refresh() == set()
    assert {r.filename: r.id for r in library.list_assets()} == before


def test_live_photo_size_counts_both_components(library, tmp_path):
    live = _by_name(library, "IMG_0002.jpg")
    expected = (tmp_path / "IMG_0002.jpg").stat().st_size + (tmp_path / "IMG_0002.mov").stat().st_size
    assert library.size_of(live.id) == expected


def test_size_of_unknown_asset_raises(library):
    with pytest.raises(ResourceError) as excinfo:
        library.size_of("missing")
    assert excinfo.value.asset_id == "missing"


def test_thumbnail_is_small_jpeg(library):
    photo = _by_name(library, "IMG_0001.jpg")
    data = library.thumbnail(photo.id)
    assert data[:2] == b"\xff\xd8"
    with Image.open(io.BytesIO(data)) as thumb:
        assert max(thumb.size) == 200


def test_no_thumbnail_for_videos_or_unknown_ids(library):
    video = _by_name(library, "clip.mp4")
    assert library.thumbnail(video.id) is None
    assert library.thumbnail("missing") is None


def test_open_original_components(library, tmp_path):
    live = _by_name(library, "IMG_0002.jpg")
    photo = _by_name(library, "IMG_0001.jpg")

    still = library.open_original(live.id, AssetComponent.STILL)
    motion = library.open_original(live.id, AssetComponent.MOTION)
    try:
        assert still.stream.read() == (tmp_path / "IMG_0002.jpg").read_bytes()
        assert motion.size == (tmp_path / "IMG_0002.mov").stat().st_size
    finally:
        still.stream.close()
        motion.stream.close()

    assert library.open_original(photo.id, AssetComponent.MOTION) is None
    assert library.open_original(photo.id, AssetComponent.STILL) is None
    original = library.open_original(photo.id, AssetComponent.ORIGINAL)
    original.stream.close()
    assert original.size == (tmp_path / "IMG_0001.jpg").stat().st_size
    assert library.open_original("missing", AssetComponent.ORIGINAL) is None


def test_refresh_reports_changed_and_removed(library, tmp_path):
    photo = _by_name(library, "IMG_0001.jpg")
    video = _by_name(library, "clip.mp4")

    _write_image(tmp_path / "IMG_0001.jpg", size=(800, 600), color=(0, 0, 255))
    stat = (tmp_path / "IMG_0001.jpg").stat()
    os.utime(tmp_path / "IMG_0001.jpg", (stat.st_atime, stat.st_mtime + 10))
    (tmp_path / "trip" / "clip.mp4").unlink()

    assert library.refresh() == {photo.id, video.id}
    assert library.get_asset(video.id) is None


def test_unreadable_image_listed_but_thumbnail_fails(tmp_path):
    (tmp_path / "broken.jpg").write_bytes(b"not an image")
    store = DirectoryAssetStore(tmp_path)
    store.refresh()
    record = store.list_assets()[0]
    assert (record.width, record.height) == (0, 0)
    with pytest.raises(ResourceError):
        store.thumbnail(record.id)


def test_missing_root_raises(tmp_path):
    store = DirectoryAssetStore(tmp_path / "nowhere")
    with pytest.raises(ResourceError):
        store.refresh()
