from ..models.encoded_image import EncodedImage
from ..models.item_record import ItemRecord
from ..models.transform_settings import TransformSettings
from ..repositories.image_repository import ImageRepository
from ..services.bounding_box_service import BoundingBoxService
from ..services.transform_service import TransformService


def normalize_image(
    item: ItemRecord,
    settings: TransformSettings,
    *,
    image_repository: ImageRepository = ImageRepository(),
    bounding_box_service: BoundingBoxService = BoundingBoxService(),
    transform_service: TransformService = None,
) -> EncodedImage:
    """
    One item end to end:
        • read and decode the source
        • find the content box with the item's own threshold
        • crop / downscale / pad / encode
    Decode and encode problems surface as DecodeError / EncodeError.
    """
    transform_service = transform_service or TransformService(image_repository)

    buffer = image_repository.decode(image_repository.read_source(item))
    box = bounding_box_service.box_for_item(item, buffer, settings.effective_margin)
    return transform_service.transform(buffer, box, settings)
