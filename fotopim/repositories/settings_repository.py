from pathlib import Path
from typing import Union
import json
import logging
import os

from dotenv import load_dotenv

from ..models.transform_settings import TransformSettings

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Session-scoped keys. Older settings files may still carry them.
SESSION_ONLY_KEYS = ("baseName", "startNumber", "threshold")


class SettingsRepository:
    """
    Persists the transform settings across sessions as a small JSON file.

    Only the keys of ``TransformSettings.to_dict()`` are written. Quality is
    fixed and naming fields / thresholds belong to the session.
    """
    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path or os.getenv("SETTINGS_PATH", "data/settings.json"))

    def _read_raw(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as err:
            logger.error(f"Error loading settings from {self.path}: {err}")
            return {}
        if not isinstance(raw, dict):
            logger.error(f"Ignoring settings file {self.path}: expected an object")
            return {}
        return raw

    def load(self) -> TransformSettings:
        """
        Return the persisted settings merged over the defaults.
        A legacy file that still stores session-only keys is rewritten without them.
        """
        raw = self._read_raw()
        legacy = [key for key in SESSION_ONLY_KEYS if key in raw]
        if legacy:
            for key in legacy:
                del raw[key]
            logger.info(f"Dropping session-only keys {legacy} from {self.path}")
            self._write_raw(raw)

        try:
            return TransformSettings.from_dict(raw)
        except ValueError as err:
            logger.error(f"Invalid persisted settings, using defaults: {err}")
            return TransformSettings()

    def save(self, settings: TransformSettings) -> None:
        raw = self._read_raw()
        for key in SESSION_ONLY_KEYS:
            raw.pop(key, None)
        raw.pop("quality", None)
        raw.update(settings.to_dict())
        self._write_raw(raw)

    def _write_raw(self, raw: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(raw, indent=2), encoding="utf-8")
        except OSError as err:
            logger.error(f"Could not write settings to {self.path}: {err}")
