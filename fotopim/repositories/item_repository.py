from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union
import logging
import os

from dotenv import load_dotenv

from ..models.item_record import DEFAULT_THRESHOLD, ItemRecord, ItemStatus

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class ItemRepository:
    """
    The ordered working collection of ItemRecords.

    Order matters: output numbers follow positions, so every mutation here is
    expected to be followed by a fresh ``NamingService.compute_names`` call.
    """
    def __init__(self, default_threshold: int = DEFAULT_THRESHOLD):
        self.VALID_EXTS = {
            ext.strip().lower()
            for ext in os.getenv("VALID_IMAGE_EXTENSIONS", ".jpg,.jpeg,.png,.webp,.bmp,.gif,.tiff,.tif").split(",")
            if ext.strip()
        }
        self.default_threshold = default_threshold
        self._items: List[ItemRecord] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ItemRecord]:
        return iter(self._items)

    @property
    def items(self) -> List[ItemRecord]:
        return list(self._items)

    def is_valid_filename(self, filename: str) -> bool:
        return Path(filename).suffix.lower() in self.VALID_EXTS

    def get(self, item_id: str) -> Optional[ItemRecord]:
        return next((item for item in self._items if item.id == item_id), None)

    def index_of(self, item_id: str) -> int:
        for index, item in enumerate(self._items):
            if item.id == item_id:
                return index
        raise KeyError(item_id)

    @staticmethod
    def _same_file(a: ItemRecord, b: ItemRecord) -> bool:
        if isinstance(a.source, Path) and isinstance(b.source, Path):
            return a.source.resolve() == b.source.resolve()
        return a.name == b.name and a.size == b.size

    # ─── adding ──────────────────────────────────────────────────────
    def add(self, name: str, source: Union[bytes, Path], size: int = 0) -> Optional[ItemRecord]:
        """
        Append one file. Returns None when the extension is not an image
        extension or the file is already present: the same path for files on
        disk, the same name and size for uploaded bytes.
        """
        if not self.is_valid_filename(name):
            logger.info(f"Skipping due to extension: {name}")
            return None
        item = ItemRecord(name=name, source=source, size=size, threshold=self.default_threshold)
        if any(self._same_file(existing, item) for existing in self._items):
            logger.info(f"Skipping duplicate: {name}")
            return None
        self._items.append(item)
        return item

    def add_paths(self, paths: Iterable[Union[str, Path]]) -> List[ItemRecord]:
        added = []
        for path in paths:
            path = Path(path)
            if not path.is_file():
                logger.info(f"Skipping because not file: {path}")
                continue
            item = self.add(path.name, path)
            if item is not None:
                added.append(item)
        return added

    def add_dir(self, folder: Union[str, Path], *, recursive: bool = False) -> List[ItemRecord]:
        """Add every image file of *folder*, sorted by filename."""
        folder = Path(folder)
        if not folder.is_dir():
            raise NotADirectoryError(folder)
        pattern = "**/*" if recursive else "*"
        return self.add_paths(sorted(folder.glob(pattern), key=lambda p: str(p).lower()))

    # ─── removing ────────────────────────────────────────────────────
    def remove(self, item_id: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        return len(self._items) != before

    def remove_many(self, item_ids: Iterable[str]) -> int:
        doomed = set(item_ids)
        before = len(self._items)
        self._items = [item for item in self._items if item.id not in doomed]
        return before - len(self._items)

    def clear(self) -> None:
        self._items.clear()

    # ─── ordering & per-item flags ───────────────────────────────────
    def move(self, item_id: str, new_index: int) -> None:
        """Move an item to *new_index* (clamped), shifting the others."""
        item = self._items.pop(self.index_of(item_id))
        new_index = max(0, min(int(new_index), len(self._items)))
        self._items.insert(new_index, item)

    def reorder(self, item_ids: List[str]) -> None:
        """Replace the order with *item_ids*, which must be a permutation of the current ids."""
        by_id = {item.id: item for item in self._items}
        if len(item_ids) != len(by_id) or set(item_ids) != set(by_id):
            raise ValueError("reorder expects every current item id exactly once")
        self._items = [by_id[item_id] for item_id in item_ids]

    def toggle_flag(self, item_id: str) -> bool:
        item = self.get(item_id)
        if item is None:
            raise KeyError(item_id)
        item.flagged = not item.flagged
        return item.flagged

    def toggle_all_flags(self) -> bool:
        """Clear every flag if all items are flagged, otherwise flag all of them."""
        new_value = not all(item.flagged for item in self._items)
        for item in self._items:
            item.flagged = new_value
        return new_value

    def set_threshold(self, item_id: str, threshold: int) -> ItemRecord:
        item = self.get(item_id)
        if item is None:
            raise KeyError(item_id)
        item.set_threshold(threshold)
        return item

    def invalidate_boxes(self) -> None:
        """Margin changed: every cached bounding box is stale."""
        for item in self._items:
            item.invalidate_bbox()

    # ─── run bookkeeping ─────────────────────────────────────────────
    def unfinished(self) -> List[ItemRecord]:
        """Items a follow-up run may pick up: still pending or failed."""
        return [item for item in self._items if item.status in (ItemStatus.PENDING, ItemStatus.ERROR)]
