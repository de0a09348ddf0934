from pathlib import PurePath
from typing import List, Optional, Sequence, Tuple
import re
import unicodedata

from ..models.batch_job import NamingSpec
from ..models.item_record import ItemRecord

# Polish letters NFD cannot fold (ł has no decomposition).
PL_MAP = str.maketrans({
    "ą": "a", "ć": "c", "ę": "e", "ł": "l", "ń": "n", "ó": "o", "ś": "s", "ź": "z", "ż": "z",
    "Ą": "A", "Ć": "C", "Ę": "E", "Ł": "L", "Ń": "N", "Ó": "O", "Ś": "S", "Ź": "Z", "Ż": "Z",
})
_COMBINING_MARKS = re.compile("[\u0300-\u036f]")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_DASH_RUNS = re.compile(r"-+")
_START_NUMBER = re.compile(r"^(.*?)([0-9]+)\Z", re.DOTALL)

LIFESTYLE_SUFFIX = "-lifestyle"
OUTPUT_EXT = ".jpg"


class NamingService:
    """
    Sequential catalogue names: ``{slug}[-lifestyle]-{prefix}{number}.jpg``.

    Names depend on position and flags, so they are always computed for the
    whole ordered collection at once. No state is kept between calls.
    """

    @staticmethod
    def slugify(text: str) -> str:
        if not text:
            return ""
        result = text.translate(PL_MAP)
        result = _COMBINING_MARKS.sub("", unicodedata.normalize("NFD", result))
        result = _NON_ALNUM.sub("-", result)
        result = _DASH_RUNS.sub("-", result)
        return result.strip("-")

    @staticmethod
    def parse_start_number(raw: str) -> Tuple[str, int, int]:
        """
        Split ``"P007"`` into ``("P", 7, 3)``: prefix, number, padding width.
        Without trailing digits the whole string is the prefix and numbering
        starts at 1 with no padding.
        """
        raw = raw or ""
        match = _START_NUMBER.match(raw)
        if not match:
            return raw, 1, 1
        digits = match.group(2)
        return match.group(1), int(digits), len(digits)

    def compute_names(self, base_name_raw: str, start_number_raw: str, items: Sequence[ItemRecord]) -> List[str]:
        """
        Args:
            base_name_raw: name as typed; slugified here.
            start_number_raw: e.g. ``"1"``, ``"P01"``, ``"A-0099"``.
            items: ordered records; only ``flagged`` and ``name`` are read.

        Returns:
            One output name per item, same order. With an empty slug every
            item keeps its original filename.
        """
        base_name = self.slugify(base_name_raw)
        if not base_name:
            return [item.name for item in items]

        prefix, start, padding = self.parse_start_number(start_number_raw)
        names = []
        for index, item in enumerate(items):
            suffix = LIFESTYLE_SUFFIX if item.flagged else ""
            number = str(start + index).zfill(padding)
            names.append(f"{base_name}{suffix}-{prefix}{number}{OUTPUT_EXT}")
        return names

    def names_for(self, naming: NamingSpec, items: Sequence[ItemRecord]) -> List[str]:
        return self.compute_names(naming.base_name, naming.start_number, items)

    def apply_names(self, naming: NamingSpec, items: Sequence[ItemRecord]) -> List[str]:
        """Recompute and store ``output_name`` on every item."""
        names = self.names_for(naming, items)
        for item, name in zip(items, names):
            item.output_name = name
        return names

    @staticmethod
    def output_filename(name: str) -> str:
        """
        Name actually written by the sinks. Sequenced names pass through; an
        original filename kept by the fallback gets a ``.jpg`` extension since
        the bytes are always JPEG.
        """
        path = PurePath(name)
        if path.suffix.lower() == OUTPUT_EXT:
            return name
        return f"{path.stem if path.suffix else name}{OUTPUT_EXT}"

    def output_filenames(self, names: Sequence[str]) -> List[Optional[str]]:
        """
        ``output_filename`` for a whole batch, without two items sharing a file.

        A fallback name whose ``.jpg`` rewrite clashes with another item's file
        keeps its original filename instead. An item whose name is still taken
        gets None; the orchestrator fails it instead of overwriting.
        """
        passthrough = {name.casefold() for name in names if self.output_filename(name) == name}
        taken = set()
        filenames = []
        for name in names:
            filename = self.output_filename(name)
            if filename != name and (filename.casefold() in passthrough or filename.casefold() in taken):
                filename = name
            if filename.casefold() in taken:
                filenames.append(None)
                continue
            taken.add(filename.casefold())
            filenames.append(filename)
        return filenames
