from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class EncodedImage:
    """JPEG bytes produced by the transform pipeline."""
    data: bytes
    width: int
    height: int
    quality: int = 100  # Quality actually used (lower if the size cap kicked in)

    @property
    def size(self) -> int:
        return len(self.data)
