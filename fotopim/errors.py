class FotopimError(Exception):
    """Base class for every error raised by fotopim."""


class ItemProcessingError(FotopimError):
    """A single item could not be processed. Never aborts the batch."""


class DecodeError(ItemProcessingError):
    """Source bytes are unreadable, unsupported or too large."""


class EncodeError(ItemProcessingError):
    """The pipeline could not produce output bytes."""


class SinkWriteError(ItemProcessingError):
    """Storing a processed file failed."""


class ArchiveAssemblyError(SinkWriteError):
    """The final archive could not be built. Fatal for the whole batch."""


class CancelledError(FotopimError):
    """The batch was stopped on request. Not a failure."""
