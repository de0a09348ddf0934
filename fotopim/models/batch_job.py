from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence
import threading

from .item_record import ItemRecord
from .transform_settings import TransformSettings
from ..errors import CancelledError, FotopimError


@dataclass(frozen=True)
class NamingSpec:
    """Raw naming fields as typed by the user (session only, never persisted)."""
    base_name: str = ""
    start_number: str = "1"


class CancellationSource:
    """
    Monotonically increasing generation counter.

    A job takes a ticket when it starts; ``cancel()`` bumps the generation so
    every ticket issued before it reads as cancelled.
    """

    def __init__(self):
        self._generation = 0
        self._lock = threading.Lock()

    def issue(self) -> int:
        with self._lock:
            return self._generation

    def cancel(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def is_cancelled(self, ticket: int) -> bool:
        return self._generation != ticket


@dataclass(eq=False)
class BatchJob:
    """
    Everything one batch run needs, passed explicitly to the orchestrator.
    Items are referenced, not copied.
    """
    items: List[ItemRecord]
    naming: NamingSpec
    settings: TransformSettings
    sink: object                                    # ArchiveSink | DirectorySink
    cancellation: CancellationSource = field(default_factory=CancellationSource)
    ticket: int = -1
    output_names: Optional[Sequence[str]] = None    # Precomputed names (follow-up runs)
    processed: int = 0
    errored: int = 0

    def __post_init__(self):
        if self.ticket < 0:
            self.ticket = self.cancellation.issue()
        if self.output_names is not None and len(self.output_names) != len(self.items):
            raise ValueError("output_names must match items one-to-one")

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation.is_cancelled(self.ticket)

    def cancel(self) -> None:
        self.cancellation.cancel()


class BatchOutcome(str, Enum):
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class BatchResult:
    total: int
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    fatal_error: Optional[str] = None
    archive: Optional[bytes] = field(default=None, repr=False)

    @property
    def outcome(self) -> BatchOutcome:
        if self.fatal_error:
            return BatchOutcome.FAILED
        if self.cancelled:
            return BatchOutcome.CANCELLED
        if self.failed:
            return BatchOutcome.COMPLETED_WITH_ERRORS
        return BatchOutcome.COMPLETED

    @property
    def pending(self) -> int:
        return self.total - self.succeeded - self.failed

    def summary(self) -> str:
        outcome = self.outcome
        if outcome is BatchOutcome.FAILED:
            return f"Batch failed: {self.fatal_error}"
        if outcome is BatchOutcome.CANCELLED:
            return (f"Cancelled after {self.succeeded + self.failed} of {self.total} items "
                    f"({self.failed} failed, {self.pending} not processed)")
        if outcome is BatchOutcome.COMPLETED_WITH_ERRORS:
            return f"Processed {self.succeeded} of {self.total} items ({self.failed} failed)"
        return f"Processed {self.succeeded} items successfully"

    def raise_for_outcome(self) -> None:
        if self.outcome is BatchOutcome.FAILED:
            raise FotopimError(self.fatal_error)
        if self.outcome is BatchOutcome.CANCELLED:
            raise CancelledError(self.summary())

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "fatal_error": self.fatal_error,
            "outcome": self.outcome.value,
            "summary": self.summary(),
        }
