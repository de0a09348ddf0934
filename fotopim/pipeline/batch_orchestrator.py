"""
Batch Orchestrator
Runs the normalize pipeline over an ordered BatchJob, one item at a time,
naming each output and handing it to the job's sink.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional
import logging

from ..errors import ArchiveAssemblyError, ItemProcessingError, SinkWriteError
from ..models.batch_job import BatchJob, BatchResult
from ..models.item_record import ItemRecord, ItemStatus
from ..repositories.image_repository import ImageRepository
from ..services.bounding_box_service import BoundingBoxService
from ..services.naming_service import NamingService
from ..services.transform_service import TransformService
from .normalize_image import normalize_image

logger = logging.getLogger(__name__)

# (processed count, total, label of the item just finished)
ProgressCallback = Callable[[int, int, str], None]


class BatchOrchestrator:
    """
    Strictly sequential: at most one item is transformed and written at a time.

    Cancellation is cooperative and checked before each item, so an item that
    has started always finishes. Item-level failures are recorded on the item
    and counted; only a failed archive assembly fails the whole batch.
    """
    def __init__(
        self,
        image_repository: ImageRepository = None,
        bounding_box_service: BoundingBoxService = None,
        transform_service: TransformService = None,
        naming_service: NamingService = None,
    ):
        self.image_repository = image_repository or ImageRepository()
        self.bounding_box_service = bounding_box_service or BoundingBoxService()
        self.transform_service = transform_service or TransformService(self.image_repository)
        self.naming_service = naming_service or NamingService()
        self._executor: Optional[ThreadPoolExecutor] = None

    def _process(self, item: ItemRecord, job: BatchJob, filename: Optional[str]) -> None:
        if filename is None:
            raise SinkWriteError(f"Output file for {item.output_name} is already used in this batch")
        encoded = normalize_image(
            item,
            job.settings,
            image_repository=self.image_repository,
            bounding_box_service=self.bounding_box_service,
            transform_service=self.transform_service,
        )
        job.sink.store(filename, encoded.data)
        logger.info(f"Processed {item.name} -> {filename} ({encoded.width}x{encoded.height}, {encoded.size} bytes)")

    @staticmethod
    def _fail(item: ItemRecord, job: BatchJob, err: Exception) -> None:
        item.status = ItemStatus.ERROR
        item.error = str(err) or type(err).__name__
        job.errored += 1

    def run(self, job: BatchJob, on_progress: Optional[ProgressCallback] = None) -> BatchResult:
        """
        Process every item of *job* in order.

        Args:
            job: items, naming fields, settings snapshot, sink and cancellation ticket.
            on_progress: called after every item, success or failure.

        Returns:
            BatchResult with succeeded/failed counts, the cancel flag and any
            fatal archive error.
        """
        result = BatchResult(total=job.total)
        job.processed = 0
        job.errored = 0
        for item in job.items:
            item.reset()

        if job.output_names is not None:
            names = list(job.output_names)
        else:
            names = self.naming_service.names_for(job.naming, job.items)
        filenames = self.naming_service.output_filenames(names)

        logger.info(f"Starting batch of {job.total} items")

        for item, name, filename in zip(job.items, names, filenames):
            if job.is_cancelled:
                result.cancelled = True
                logger.info(f"Batch cancelled after {job.processed} of {job.total} items")
                break

            item.status = ItemStatus.PROCESSING
            item.output_name = name
            try:
                self._process(item, job, filename)
            except ItemProcessingError as err:
                logger.warning(f"Error processing {item.name}: {err}")
                self._fail(item, job, err)
            except Exception as err:
                logger.exception(f"Unexpected error processing {item.name}")
                self._fail(item, job, err)
            else:
                item.status = ItemStatus.DONE
                result.succeeded += 1

            job.processed += 1
            if on_progress is not None:
                try:
                    on_progress(job.processed, job.total, item.name)
                except Exception:
                    logger.exception("Progress callback failed")

        result.failed = job.errored

        try:
            archive = job.sink.finalize()
        except ArchiveAssemblyError as err:
            result.fatal_error = str(err)
            logger.error(f"Batch failed: {err}")
        else:
            result.archive = archive if isinstance(archive, bytes) else None

        logger.info(result.summary())
        return result

    def submit(self, job: BatchJob, on_progress: Optional[ProgressCallback] = None) -> Future:
        """Run *job* on the orchestrator's single worker thread."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fotopim-batch")
        return self._executor.submit(self.run, job, on_progress)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
