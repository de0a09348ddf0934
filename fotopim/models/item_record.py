from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple, Union
import os
import uuid

from dotenv import load_dotenv

from .bounding_box import BoundingBox

load_dotenv()
DEFAULT_THRESHOLD = int(os.getenv("DEFAULT_THRESHOLD", "20"))


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


def _new_id() -> str:
    return uuid.uuid4().hex[:9]


@dataclass(eq=False)
class ItemRecord:
    """
    One photograph in the working collection.

    The source is either the raw file bytes (uploads) or a path read on
    demand (CLI). Threshold and lifestyle flag are tuned per item.
    """
    name: str                                   # Original filename, also the display label.
    source: Union[bytes, Path]
    size: int = 0                               # Source size in bytes
    threshold: int = DEFAULT_THRESHOLD
    flagged: bool = False                       # "lifestyle" shot
    status: ItemStatus = ItemStatus.PENDING
    id: str = field(default_factory=_new_id)
    output_name: str = ""
    error: Optional[str] = None
    resolution: Optional[Tuple[int, int]] = None
    trimmed_resolution: Optional[Tuple[int, int]] = None
    bbox: Optional[BoundingBox] = field(default=None, repr=False)
    bbox_key: Optional[Tuple[int, int]] = field(default=None, repr=False)  # (threshold, margin) of bbox

    def __post_init__(self):
        if isinstance(self.source, str):
            self.source = Path(self.source)
        if not self.size:
            self.size = len(self.source) if isinstance(self.source, bytes) else self.source.stat().st_size

    def set_threshold(self, threshold: int) -> None:
        threshold = int(threshold)
        if not 0 <= threshold <= 255:
            raise ValueError(f"threshold must be within [0, 255], got {threshold}")
        if threshold != self.threshold:
            self.threshold = threshold
            self.invalidate_bbox()

    def invalidate_bbox(self) -> None:
        self.bbox = None
        self.bbox_key = None
        self.trimmed_resolution = None

    def reset(self) -> None:
        """Back to ``pending`` before a new run."""
        self.status = ItemStatus.PENDING
        self.error = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "threshold": self.threshold,
            "flagged": self.flagged,
            "status": self.status.value,
            "output_name": self.output_name,
            "error": self.error,
            "resolution": "x".join(map(str, self.resolution)) if self.resolution else None,
            "trimmed_resolution": (
                "x".join(map(str, self.trimmed_resolution)) if self.trimmed_resolution else None
            ),
        }
