from typing import Tuple
import logging
import os

import cv2
import numpy as np
from dotenv import load_dotenv

from ..errors import EncodeError
from ..models.bounding_box import BoundingBox
from ..models.encoded_image import EncodedImage
from ..models.pixel_buffer import PixelBuffer
from ..models.transform_settings import TransformSettings
from ..repositories.image_repository import ImageRepository

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

WHITE = 255


class TransformService:
    """
    Crop → downscale → pad → encode, always in that order.

    Every step returns a new array; the decoded buffer is never written to.
    """
    def __init__(self, image_repository: ImageRepository = None):
        self.image_repository = image_repository or ImageRepository()
        self.MIN_JPEG_QUALITY = int(os.getenv("MIN_JPEG_QUALITY", "40"))

    # ─── geometry ────────────────────────────────────────────────────
    @staticmethod
    def crop(pixels: np.ndarray, box: BoundingBox) -> np.ndarray:
        height, width = pixels.shape[:2]
        if box.left < 0 or box.top < 0 or box.right >= width or box.bottom >= height \
                or box.left > box.right or box.top > box.bottom:
            raise ValueError(f"Crop box {box.as_tuple()} does not fit a {width}x{height} image")
        return pixels[box.top:box.bottom + 1, box.left:box.right + 1].copy()

    @staticmethod
    def scaled_size(width: int, height: int, max_side: int) -> Tuple[int, int]:
        """
        Size after fitting the longest side into *max_side*, floored.
        Returns the input size unchanged when it already fits.
        """
        longest = max(width, height)
        if longest <= max_side:
            return width, height
        return max(1, width * max_side // longest), max(1, height * max_side // longest)

    def downscale(self, pixels: np.ndarray, max_side: int) -> np.ndarray:
        height, width = pixels.shape[:2]
        new_width, new_height = self.scaled_size(width, height, max_side)
        if (new_width, new_height) == (width, height):
            return pixels
        return cv2.resize(pixels, (new_width, new_height), interpolation=cv2.INTER_AREA)

    @staticmethod
    def padded_size(width: int, height: int, min_side: int) -> Tuple[int, int]:
        return max(width, min_side), max(height, min_side)

    def pad(self, pixels: np.ndarray, min_side: int) -> np.ndarray:
        """Center *pixels* on an opaque white canvas at least *min_side* on each side."""
        height, width = pixels.shape[:2]
        new_width, new_height = self.padded_size(width, height, min_side)
        if (new_width, new_height) == (width, height):
            return pixels

        canvas = np.full((new_height, new_width, pixels.shape[2]), WHITE, dtype=np.uint8)
        x = (new_width - width) // 2
        y = (new_height - height) // 2
        canvas[y:y + height, x:x + width] = pixels
        return canvas

    @staticmethod
    def flatten(pixels: np.ndarray) -> np.ndarray:
        """Composite onto opaque white and drop the alpha channel."""
        if pixels.shape[2] == 3:
            return pixels
        rgb = pixels[:, :, :3].astype(np.float32)
        alpha = pixels[:, :, 3:4].astype(np.float32) / 255.0
        out = rgb * alpha + WHITE * (1.0 - alpha)
        return np.clip(np.rint(out), 0, 255).astype(np.uint8)

    # ─── encoding ────────────────────────────────────────────────────
    def encode(self, rgb: np.ndarray, settings: TransformSettings) -> Tuple[bytes, int]:
        """
        JPEG-encode at ``settings.quality``. With the size cap enabled and the
        result too large, binary-search the highest quality that fits.

        Returns:
            (jpeg bytes, quality used)
        """
        data = self.image_repository.encode_jpeg(rgb, settings.quality)
        if not settings.use_max_mb or len(data) <= settings.max_bytes:
            return data, settings.quality

        floor_quality = min(self.MIN_JPEG_QUALITY, settings.quality)
        lo, hi = floor_quality, settings.quality - 1
        best = None
        while lo <= hi:
            mid = (lo + hi) // 2
            candidate = self.image_repository.encode_jpeg(rgb, mid)
            if len(candidate) <= settings.max_bytes:
                best = (candidate, mid)
                lo = mid + 1
            else:
                hi = mid - 1

        if best is None:
            best = (self.image_repository.encode_jpeg(rgb, floor_quality), floor_quality)
            logger.warning(
                f"JPEG still {len(best[0])} bytes at quality {floor_quality}, "
                f"above the {settings.max_mb} MB cap"
            )
        return best

    # ─── full pipeline ───────────────────────────────────────────────
    def transform(self, buffer: PixelBuffer, box: BoundingBox, settings: TransformSettings) -> EncodedImage:
        """
        Args:
            buffer: decoded source image.
            box: content box from BoundingBoxService (margin already applied).
            settings: run snapshot.

        Returns:
            EncodedImage with the JPEG bytes and final dimensions.

        Raises:
            EncodeError: any failure while building or encoding the output.
        """
        try:
            working = self.crop(buffer.pixels, box)
            if settings.use_max_side:
                working = self.downscale(working, settings.max_side)
            if settings.use_min_size:
                working = self.pad(working, settings.min_side)
            rgb = self.flatten(working)
        except (ValueError, cv2.error, MemoryError) as err:
            raise EncodeError(f"Transform failed: {err}") from err

        data, quality = self.encode(rgb, settings)
        height, width = rgb.shape[:2]
        logger.debug(f"Encoded {width}x{height} at quality {quality}: {len(data)} bytes")
        return EncodedImage(data=data, width=width, height=height, quality=quality)
