from io import BytesIO

import numpy as np
import pytest
from PIL import Image as PILImage

from fotopim.models.item_record import ItemRecord
from fotopim.models.pixel_buffer import PixelBuffer


@pytest.fixture
def make_pixels():
    """
    White RGBA canvas with an optional filled rectangle.
    ``rect`` is (left, top, right, bottom), inclusive.
    """
    def _make(width, height, rect=None, color=(0, 0, 0, 255), background=(255, 255, 255, 255)):
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:] = background
        if rect is not None:
            left, top, right, bottom = rect
            pixels[top:bottom + 1, left:right + 1] = color
        return pixels
    return _make


@pytest.fixture
def make_buffer(make_pixels):
    def _make(*args, **kwargs):
        return PixelBuffer(pixels=make_pixels(*args, **kwargs))
    return _make


@pytest.fixture
def png_bytes():
    def _encode(pixels: np.ndarray) -> bytes:
        buffer = BytesIO()
        PILImage.fromarray(pixels).save(buffer, format="PNG")
        return buffer.getvalue()
    return _encode


@pytest.fixture
def make_item(make_pixels, png_bytes):
    """ItemRecord holding a PNG with a dark product in the middle of a white margin."""
    def _make(name="photo.png", width=60, height=40, data=None, **kwargs):
        if data is None:
            data = png_bytes(make_pixels(width, height, rect=(10, 5, width - 11, height - 6)))
        return ItemRecord(name=name, source=data, **kwargs)
    return _make


@pytest.fixture
def jpeg_size():
    def _size(jpeg: bytes):
        with PILImage.open(BytesIO(jpeg)) as img:
            assert img.format == "JPEG"
            return img.size
    return _size
