import numpy as np
import pytest

from fotopim.models.bounding_box import BoundingBox
from fotopim.models.pixel_buffer import PixelBuffer
from fotopim.services.bounding_box_service import BoundingBoxService


@pytest.fixture
def detector():
    return BoundingBoxService()


def test_detect_returns_tight_box_around_content(detector, make_buffer):
    buffer = make_buffer(100, 80, rect=(10, 20, 29, 39))

    assert detector.detect(buffer, threshold=20) == BoundingBox(10, 20, 29, 39)


def test_margin_expands_and_is_clamped(detector, make_buffer):
    buffer = make_buffer(100, 80, rect=(10, 20, 29, 39))

    assert detector.detect(buffer, 20, margin=5) == BoundingBox(5, 15, 34, 44)
    assert detector.detect(buffer, 20, margin=50) == BoundingBox(0, 0, 99, 79)


@pytest.mark.parametrize("threshold", [0, 20, 128, 255])
@pytest.mark.parametrize("margin", [0, 10])
def test_uniform_white_gives_full_image(detector, make_buffer, threshold, margin):
    buffer = make_buffer(37, 23)

    assert detector.detect(buffer, threshold, margin) == BoundingBox(0, 0, 36, 22)


def test_threshold_is_a_tolerance(detector, make_buffer):
    buffer = make_buffer(50, 50, rect=(20, 20, 24, 24), color=(240, 240, 240, 255))

    # 240 < 255 - 10: still content
    assert detector.detect(buffer, threshold=10) == BoundingBox(20, 20, 24, 24)
    # 240 >= 255 - 20: background, nothing left
    assert detector.detect(buffer, threshold=20) == BoundingBox(0, 0, 49, 49)


def test_single_dark_channel_is_enough(detector, make_buffer):
    buffer = make_buffer(30, 30, rect=(3, 4, 3, 4), color=(255, 255, 100, 255))

    assert detector.detect(buffer, threshold=20) == BoundingBox(3, 4, 3, 4)


def test_transparent_pixels_are_background(detector, make_buffer):
    buffer = make_buffer(40, 40, rect=(5, 5, 10, 10), color=(0, 0, 0, 0))

    assert detector.detect(buffer, threshold=20) == BoundingBox(0, 0, 39, 39)


def test_rgb_buffer_without_alpha(detector):
    pixels = np.full((20, 30, 3), 255, dtype=np.uint8)
    pixels[7, 12] = (0, 0, 0)

    assert detector.detect(PixelBuffer(pixels), threshold=20) == BoundingBox(12, 7, 12, 7)


def test_left_and_right_use_content_rows(detector, make_pixels):
    pixels = make_pixels(40, 40)
    pixels[5, 30] = (0, 0, 0, 255)
    pixels[25, 8] = (0, 0, 0, 255)

    assert detector.detect(PixelBuffer(pixels), threshold=20) == BoundingBox(8, 5, 30, 25)


def test_random_content_is_enclosed_and_tight(detector):
    rng = np.random.default_rng(7)
    for _ in range(20):
        height, width = rng.integers(5, 60, size=2)
        pixels = np.full((height, width, 4), 255, dtype=np.uint8)
        count = int(rng.integers(1, 6))
        ys = rng.integers(0, height, size=count)
        xs = rng.integers(0, width, size=count)
        pixels[ys, xs, 0] = rng.integers(0, 200, size=count)
        margin = int(rng.integers(0, 4))

        box = detector.detect(PixelBuffer(pixels), threshold=30, margin=margin)

        assert 0 <= box.left <= box.right <= width - 1
        assert 0 <= box.top <= box.bottom <= height - 1
        assert box.left == max(0, xs.min() - margin)
        assert box.right == min(width - 1, xs.max() + margin)
        assert box.top == max(0, ys.min() - margin)
        assert box.bottom == min(height - 1, ys.max() + margin)


def test_detect_is_deterministic_and_leaves_buffer_untouched(detector):
    rng = np.random.default_rng(3)
    pixels = rng.integers(0, 256, size=(64, 48, 4), dtype=np.uint8)
    buffer = PixelBuffer(pixels)
    before = buffer.pixels.copy()

    first = detector.detect(buffer, 40, 3)
    second = detector.detect(buffer, 40, 3)

    assert first == second
    assert np.array_equal(buffer.pixels, before)
    assert not buffer.pixels.flags.writeable


@pytest.mark.parametrize("threshold, margin", [(-1, 0), (256, 0), (10, -1)])
def test_invalid_arguments(detector, make_buffer, threshold, margin):
    with pytest.raises(ValueError):
        detector.detect(make_buffer(10, 10), threshold, margin)


def test_box_for_item_caches_until_threshold_or_margin_changes(detector, make_buffer, make_item):
    item = make_item()
    buffer = make_buffer(100, 80, rect=(10, 20, 29, 39))

    box = detector.box_for_item(item, buffer, margin=0)
    assert box == BoundingBox(10, 20, 29, 39)
    assert item.resolution == (100, 80)
    assert item.trimmed_resolution == (20, 20)
    assert detector.box_for_item(item, buffer, margin=0) is box

    assert detector.box_for_item(item, buffer, margin=2) == BoundingBox(8, 18, 31, 41)

    item.set_threshold(255)
    assert item.bbox is None
    assert detector.box_for_item(item, buffer, margin=2) == BoundingBox(0, 0, 99, 79)
