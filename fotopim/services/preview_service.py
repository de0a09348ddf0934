from typing import Dict, Optional
import base64
import logging
import os

from dotenv import load_dotenv

from ..models.item_record import ItemRecord
from ..models.pixel_buffer import PixelBuffer
from ..models.transform_settings import TransformSettings
from ..repositories.image_repository import ImageRepository
from .bounding_box_service import BoundingBoxService
from .transform_service import TransformService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class PreviewService:
    """
    Interactive threshold preview. Uses the batch detector and effective
    margin so what is shown is exactly what the batch will crop.
    """
    def __init__(
        self,
        image_repository: ImageRepository = None,
        bounding_box_service: BoundingBoxService = None,
        transform_service: TransformService = None,
    ):
        self.image_repository = image_repository or ImageRepository()
        self.bounding_box_service = bounding_box_service or BoundingBoxService()
        self.transform_service = transform_service or TransformService(self.image_repository)
        self.PREVIEW_MAX_SIDE = int(os.getenv("PREVIEW_MAX_SIDE", "800"))
        self.PREVIEW_JPEG_QUALITY = int(os.getenv("PREVIEW_JPEG_QUALITY", "70"))
        self._buffers: Dict[str, PixelBuffer] = {}

    def buffer_for(self, item: ItemRecord) -> PixelBuffer:
        """Decoded pixels of *item*, decoded once per item."""
        buffer = self._buffers.get(item.id)
        if buffer is None:
            buffer = self.image_repository.decode(self.image_repository.read_source(item))
            self._buffers[item.id] = buffer
        return buffer

    def forget(self, item_id: Optional[str] = None) -> None:
        if item_id is None:
            self._buffers.clear()
        else:
            self._buffers.pop(item_id, None)

    def describe(self, item: ItemRecord, settings: TransformSettings, *, include_image: bool = False) -> dict:
        """
        Returns:
            dict with ``bbox``, ``resolution``, ``trimmed_resolution`` and,
            when requested, a JPEG data URL of the trimmed region.
        """
        buffer = self.buffer_for(item)
        box = self.bounding_box_service.box_for_item(item, buffer, settings.effective_margin)

        preview = item.to_dict()
        preview["bbox"] = box.as_dict()
        if include_image:
            preview["image"] = self.render(buffer, box)
        return preview

    def render(self, buffer: PixelBuffer, box) -> str:
        cropped = self.transform_service.crop(buffer.pixels, box)
        cropped = self.transform_service.downscale(cropped, self.PREVIEW_MAX_SIDE)
        rgb = self.transform_service.flatten(cropped)
        jpeg = self.image_repository.encode_jpeg(rgb, self.PREVIEW_JPEG_QUALITY)
        return f"data:image/jpeg;base64,{base64.b64encode(jpeg).decode('utf-8')}"
