from io import BytesIO
import json

import numpy as np
import pytest
from PIL import Image as PILImage

from fotopim.errors import DecodeError
from fotopim.models.item_record import ItemRecord, ItemStatus
from fotopim.models.transform_settings import TransformSettings
from fotopim.repositories.image_repository import ImageRepository
from fotopim.repositories.item_repository import ItemRepository
from fotopim.repositories.settings_repository import SettingsRepository


# ─── ImageRepository ─────────────────────────────────────────────────
@pytest.fixture
def images():
    return ImageRepository()


def test_decode_png_to_rgba(images, make_pixels, png_bytes):
    pixels = make_pixels(12, 7, rect=(2, 2, 4, 4))

    buffer = images.decode(png_bytes(pixels))

    assert (buffer.width, buffer.height) == (12, 7)
    assert buffer.has_alpha
    assert np.array_equal(buffer.pixels, pixels)


def test_decode_jpeg_is_opaque(images):
    out = BytesIO()
    PILImage.new("RGB", (20, 10), (200, 10, 10)).save(out, format="JPEG")

    buffer = images.decode(out.getvalue())

    assert buffer.pixels.shape == (10, 20, 4)
    assert np.all(buffer.pixels[..., 3] == 255)


def test_decode_applies_exif_orientation(images):
    img = PILImage.new("RGB", (30, 10), (0, 0, 0))
    exif = img.getexif()
    exif[0x0112] = 6  # rotate 90 CW on display
    out = BytesIO()
    img.save(out, format="JPEG", exif=exif.tobytes())

    buffer = images.decode(out.getvalue())

    assert (buffer.width, buffer.height) == (10, 30)


@pytest.mark.parametrize("data", [b"", b"not an image at all", b"\x89PNG\r\n\x1a\n garbage"])
def test_decode_rejects_garbage(images, data):
    with pytest.raises(DecodeError):
        images.decode(data)


def test_decode_rejects_oversized_images(images, make_pixels, png_bytes):
    images.MAX_IMAGE_PIXELS = 100

    with pytest.raises(DecodeError):
        images.decode(png_bytes(make_pixels(20, 20)))


def test_read_source_from_path(images, tmp_path):
    path = tmp_path / "a.png"
    path.write_bytes(b"payload")
    item = ItemRecord(name="a.png", source=path)

    assert item.size == 7
    assert images.read_source(item) == b"payload"

    path.unlink()
    with pytest.raises(DecodeError):
        images.read_source(item)


def test_encode_jpeg(images, jpeg_size):
    rgb = np.zeros((8, 16, 3), dtype=np.uint8)

    assert jpeg_size(images.encode_jpeg(rgb[:, ::2], 90)) == (8, 8)


# ─── ItemRepository ──────────────────────────────────────────────────
@pytest.fixture
def repo():
    return ItemRepository()


def test_add_filters_extensions_and_duplicates(repo):
    assert repo.add("a.jpg", b"1234") is not None
    assert repo.add("notes.txt", b"1234") is None
    assert repo.add("a.jpg", b"1234") is None
    assert repo.add("a.jpg", b"12345") is not None
    assert repo.add("B.PNG", b"1") is not None

    assert [item.name for item in repo] == ["a.jpg", "a.jpg", "B.PNG"]


def test_add_dir_is_sorted(repo, tmp_path):
    for name in ["c.png", "A.jpg", "b.webp", "readme.md"]:
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "d.png").write_bytes(b"x")

    repo.add_dir(tmp_path)
    assert [item.name for item in repo] == ["A.jpg", "b.webp", "c.png"]

    repo.clear()
    repo.add_dir(tmp_path, recursive=True)
    assert len(repo) == 4

    with pytest.raises(NotADirectoryError):
        repo.add_dir(tmp_path / "c.png")


def test_move_and_reorder(repo):
    a, b, c = (repo.add(f"{n}.jpg", n.encode()) for n in "abc")

    repo.move(c.id, 0)
    assert repo.items == [c, a, b]
    repo.move(c.id, 99)
    assert repo.items == [a, b, c]

    repo.reorder([b.id, c.id, a.id])
    assert repo.items == [b, c, a]
    with pytest.raises(ValueError):
        repo.reorder([b.id, c.id])
    with pytest.raises(KeyError):
        repo.move("missing", 0)


def test_remove(repo):
    a, b, c = (repo.add(f"{n}.jpg", n.encode()) for n in "abc")

    assert repo.remove(b.id)
    assert not repo.remove(b.id)
    assert repo.remove_many([a.id, c.id, "missing"]) == 2
    assert len(repo) == 0


def test_toggle_all_flags(repo):
    a, b = repo.add("a.jpg", b"a"), repo.add("b.jpg", b"b")
    repo.toggle_flag(a.id)

    assert repo.toggle_all_flags() is True
    assert a.flagged and b.flagged
    assert repo.toggle_all_flags() is False
    assert not a.flagged and not b.flagged


def test_set_threshold_validates_and_invalidates(repo):
    item = repo.add("a.jpg", b"a")
    item.bbox_key = (20, 0)

    repo.set_threshold(item.id, 40)
    assert item.threshold == 40 and item.bbox_key is None

    with pytest.raises(ValueError):
        repo.set_threshold(item.id, 256)


def test_unfinished(repo):
    a, b, c = (repo.add(f"{n}.jpg", n.encode()) for n in "abc")
    a.status, b.status = ItemStatus.DONE, ItemStatus.ERROR
    b.error = "broken"

    assert repo.unfinished() == [b, c]


def test_same_name_in_different_folders_is_kept(repo, tmp_path):
    (tmp_path / "set1").mkdir()
    (tmp_path / "set2").mkdir()
    (tmp_path / "set1" / "front.png").write_bytes(b"same")
    (tmp_path / "set2" / "front.png").write_bytes(b"same")

    assert len(repo.add_dir(tmp_path, recursive=True)) == 2
    assert repo.add_dir(tmp_path, recursive=True) == []
    assert len(repo) == 2


# ─── SettingsRepository ──────────────────────────────────────────────
def test_settings_missing_file_gives_defaults(tmp_path):
    assert SettingsRepository(tmp_path / "settings.json").load() == TransformSettings()


def test_settings_round_trip_keeps_unknown_keys(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"theme": "dark"}))
    repo = SettingsRepository(path)

    repo.save(TransformSettings(margin=9, use_max_side=False))

    stored = json.loads(path.read_text())
    assert stored["theme"] == "dark"
    assert stored["margin"] == 9 and stored["useMaxSide"] is False
    assert "quality" not in stored
    assert repo.load() == TransformSettings(margin=9, use_max_side=False)


def test_settings_legacy_session_keys_are_dropped(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"margin": 3, "baseName": "old", "startNumber": "7", "threshold": 50}))

    settings = SettingsRepository(path).load()

    assert settings.margin == 3
    assert json.loads(path.read_text()) == {"margin": 3}


@pytest.mark.parametrize("content", ["{broken", "[1, 2]"])
def test_settings_unreadable_file_gives_defaults(tmp_path, content):
    path = tmp_path / "settings.json"
    path.write_text(content)

    assert SettingsRepository(path).load() == TransformSettings()
