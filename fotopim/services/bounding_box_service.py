import numpy as np

from ..models.bounding_box import BoundingBox
from ..models.item_record import ItemRecord
from ..models.pixel_buffer import PixelBuffer


class BoundingBoxService:
    """
    Finds the rectangle of non-background content in a PixelBuffer.

    Pure functions of their inputs: the batch pipeline and the interactive
    preview call the same ``detect`` and may do so concurrently.
    """

    @staticmethod
    def content_mask(pixels: np.ndarray, threshold: int) -> np.ndarray:
        """
        Boolean (H, W) mask of content pixels.

        A pixel is content when its alpha is non-zero (or there is no alpha)
        and at least one of R, G, B is darker than ``255 - threshold``.
        """
        cutoff = 255 - threshold
        mask = (pixels[:, :, :3] < cutoff).any(axis=2)
        if pixels.shape[2] == 4:
            mask &= pixels[:, :, 3] > 0
        return mask

    @staticmethod
    def _first(flags: np.ndarray) -> int:
        return int(np.argmax(flags))

    @staticmethod
    def _last(flags: np.ndarray) -> int:
        return len(flags) - 1 - int(np.argmax(flags[::-1]))

    def detect(self, buffer: PixelBuffer, threshold: int, margin: int = 0) -> BoundingBox:
        """
        Args:
            buffer: decoded image, left untouched.
            threshold: background tolerance in [0, 255]; higher treats more
                near-white pixels as background.
            margin: pixels added on every side after detection, clamped to
                the image.

        Returns:
            BoundingBox enclosing all content pixels plus margin, or the full
            image when there is no content at all.
        """
        if not 0 <= threshold <= 255:
            raise ValueError(f"threshold must be within [0, 255], got {threshold}")
        if margin < 0:
            raise ValueError(f"margin must be >= 0, got {margin}")

        width, height = buffer.width, buffer.height
        mask = self.content_mask(buffer.pixels, threshold)

        rows = mask.any(axis=1)
        if not rows.any():
            return BoundingBox.full(width, height)

        top = self._first(rows)
        bottom = self._last(rows)
        # Columns are only scanned inside the content rows.
        cols = mask[top:bottom + 1].any(axis=0)
        left = self._first(cols)
        right = self._last(cols)

        return BoundingBox(
            left=max(0, left - margin),
            top=max(0, top - margin),
            right=min(width - 1, right + margin),
            bottom=min(height - 1, bottom + margin),
        )

    def box_for_item(self, item: ItemRecord, buffer: PixelBuffer, margin: int) -> BoundingBox:
        """
        Cached ``detect`` for an item, keyed on (threshold, margin).
        Also records the item's original and trimmed resolution.
        """
        key = (item.threshold, margin)
        if item.bbox is None or item.bbox_key != key:
            item.bbox = self.detect(buffer, item.threshold, margin)
            item.bbox_key = key
        item.resolution = (buffer.width, buffer.height)
        item.trimmed_resolution = (item.bbox.width, item.bbox.height)
        return item.bbox
