from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple, Union
import logging
import os
import zipfile

from dotenv import load_dotenv

from ..errors import ArchiveAssemblyError, SinkWriteError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

ARCHIVE_NAME = os.getenv("ARCHIVE_NAME", "fotopim-processed.zip")


class ArchiveSink:
    """
    Collects processed files in memory and packs them into one zip archive.

    ``store`` only buffers; the archive is an all-or-nothing artifact built by
    ``finalize``, whose failure is fatal for the batch.
    """
    def __init__(self, archive_path: Union[str, Path, None] = None, archive_name: str = ARCHIVE_NAME):
        self.archive_name = archive_name
        self.archive_path = Path(archive_path) if archive_path else None
        self.entries: List[Tuple[str, bytes]] = []
        self.archive: Optional[bytes] = None

    def __len__(self) -> int:
        return len(self.entries)

    def store(self, name: str, data: bytes) -> None:
        if not name:
            raise SinkWriteError("Archive entry needs a name")
        if any(existing == name for existing, _ in self.entries):
            raise SinkWriteError(f"Archive already has an entry named {name}")
        self.entries.append((name, data))

    def finalize(self) -> Optional[bytes]:
        """
        Build the zip (and write it to ``archive_path`` when set).

        Returns:
            The archive bytes, or None when nothing was stored.

        Raises:
            ArchiveAssemblyError: the archive could not be assembled or written.
        """
        if not self.entries:
            logger.info("No processed files, skipping archive")
            return None
        buffer = BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for name, data in self.entries:
                    zf.writestr(name, data)
            self.archive = buffer.getvalue()
            if self.archive_path is not None:
                self.archive_path.parent.mkdir(parents=True, exist_ok=True)
                self.archive_path.write_bytes(self.archive)
                logger.info(f"Archive written: {self.archive_path}")
        except (OSError, ValueError, zipfile.LargeZipFile) as err:
            self.archive = None
            raise ArchiveAssemblyError(f"Could not build {self.archive_name}: {err}") from err
        logger.info(f"Archive {self.archive_name} created ({len(self.entries)} files, {len(self.archive)} bytes)")
        return self.archive


class DirectorySink:
    """
    Writes each processed file immediately under *directory*.

    Files left by earlier runs are overwritten; a second file with the same
    name in one run is refused.
    """
    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.saved: List[Path] = []

    def store(self, name: str, data: bytes) -> None:
        target = self.directory / name
        if target.parent != self.directory:
            raise SinkWriteError(f"Refusing to write outside {self.directory}: {name}")
        if target in self.saved:
            raise SinkWriteError(f"{target} was already written in this batch")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as err:
            raise SinkWriteError(f"Could not write {target}: {err}") from err
        self.saved.append(target)
        logger.info(f"Saved: {target}")

    def finalize(self) -> None:
        logger.info(f"{len(self.saved)} files saved to {self.directory}")
        return None
