from io import BytesIO
from pathlib import Path
import logging
import os

import numpy as np
from PIL import Image as PILImage, ImageOps
from dotenv import load_dotenv

from ..errors import DecodeError, EncodeError
from ..models.item_record import ItemRecord
from ..models.pixel_buffer import PixelBuffer

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ImageRepository:
    """
    Handles byte I/O and codec work for PixelBuffer entities.
    Pillow is the only codec used; nothing outside this file decodes or encodes.
    """
    def __init__(self):
        self.MAX_SOURCE_BYTES = int(float(os.getenv("MAX_SOURCE_MB", "100")) * 1024 * 1024)
        self.MAX_IMAGE_PIXELS = int(os.getenv("MAX_IMAGE_PIXELS", str(16384 * 16384)))

    def read_source(self, item: ItemRecord) -> bytes:
        """Return the raw file bytes of an item, reading from disk if needed."""
        if isinstance(item.source, bytes):
            return item.source
        path = Path(item.source)
        try:
            size = path.stat().st_size
            if size > self.MAX_SOURCE_BYTES:
                raise DecodeError(f"{path.name}: {size} bytes exceeds the {self.MAX_SOURCE_BYTES} byte limit")
            return path.read_bytes()
        except OSError as err:
            raise DecodeError(f"Could not read {path}: {err}") from err

    def decode(self, data: bytes) -> PixelBuffer:
        """
        Decode JPEG/PNG/WEBP (and whatever else Pillow reads) into RGBA pixels.

        EXIF orientation is applied; animated sources contribute their first frame.

        Raises:
            DecodeError: unreadable, unsupported or oversized input.
        """
        if not data:
            raise DecodeError("Empty source")
        if len(data) > self.MAX_SOURCE_BYTES:
            raise DecodeError(f"Source of {len(data)} bytes exceeds the {self.MAX_SOURCE_BYTES} byte limit")

        try:
            with PILImage.open(BytesIO(data)) as pil_img:
                width, height = pil_img.size
                if width * height > self.MAX_IMAGE_PIXELS:
                    raise DecodeError(f"Image of {width}x{height} exceeds the {self.MAX_IMAGE_PIXELS} pixel limit")
                pil_img.seek(0)
                pil_img.load()
                pil_img = ImageOps.exif_transpose(pil_img)
                rgba = pil_img.convert("RGBA")
        except DecodeError:
            raise
        except (OSError, ValueError, SyntaxError, PILImage.DecompressionBombError) as err:
            raise DecodeError(f"Cannot decode image: {err}") from err

        return PixelBuffer(pixels=np.asarray(rgba, dtype=np.uint8))

    @staticmethod
    def encode_jpeg(rgb: np.ndarray, quality: int) -> bytes:
        """
        Encode an opaque (H, W, 3) uint8 array as JPEG.

        Raises:
            EncodeError: Pillow failed to produce bytes.
        """
        if not rgb.flags["C_CONTIGUOUS"]:
            rgb = np.ascontiguousarray(rgb)
        buffer = BytesIO()
        try:
            PILImage.fromarray(rgb).save(buffer, format="JPEG", quality=int(quality))
        except (OSError, ValueError) as err:
            raise EncodeError(f"JPEG encoding failed: {err}") from err
        data = buffer.getvalue()
        if not data:
            raise EncodeError("JPEG encoder returned no data")
        return data
