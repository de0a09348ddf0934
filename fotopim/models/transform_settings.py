from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Mapping


def _as_int(value: Any, default: int) -> int:
    """Parse an int the way the settings form does: empty, junk or 0 → default."""
    try:
        parsed = int(float(value))
    except (TypeError, ValueError):
        return default
    return parsed or default


def _as_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed or default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class TransformSettings:
    """
    Value-object with the crop/resize/pad/encode parameters of one batch run.
    Each ``use_*`` flag gates its step.
    """
    margin: int = 0           # px added around the detected content
    use_margin: bool = True
    max_side: int = 3000      # px, longest side after downscale
    use_max_side: bool = True
    min_side: int = 500       # px, canvas minimum after padding
    use_min_size: bool = True
    quality: int = 100        # JPEG quality [1, 100]
    max_mb: float = 2.99      # size cap of the encoded JPEG in MiB
    use_max_mb: bool = True

    def __post_init__(self):
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be within [1, 100], got {self.quality}")
        if self.margin < 0:
            raise ValueError(f"margin must be >= 0, got {self.margin}")
        if self.max_side < 1 or self.min_side < 1:
            raise ValueError("max_side and min_side must be positive")
        if self.max_mb <= 0:
            raise ValueError(f"max_mb must be positive, got {self.max_mb}")

    @property
    def effective_margin(self) -> int:
        """Margin handed to the detector; 0 when the margin step is switched off."""
        return self.margin if self.use_margin else 0

    @property
    def max_bytes(self) -> int:
        return int(self.max_mb * 1024 * 1024)

    # ── (de)serialisation, camelCase keys as stored by the settings file ──
    _KEYS = {
        "margin": "margin",
        "useMargin": "use_margin",
        "maxSide": "max_side",
        "useMaxSide": "use_max_side",
        "minSize": "min_side",
        "useMinSize": "use_min_size",
        "maxMb": "max_mb",
        "useMaxMb": "use_max_mb",
    }

    def to_dict(self) -> dict:
        values = asdict(self)
        return {key: values[attr] for key, attr in self._KEYS.items()}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], base: "TransformSettings | None" = None) -> "TransformSettings":
        """
        Build settings from a camelCase mapping (form data, JSON file).
        Missing keys fall back to *base* (or the defaults); ``quality`` is
        never read from the mapping and stays fixed.
        """
        base = base or cls()
        try:
            margin = max(0, int(float(raw.get("margin", base.margin))))
        except (TypeError, ValueError):
            margin = 0
        return cls(
            margin=margin,
            use_margin=_as_bool(raw.get("useMargin"), base.use_margin),
            max_side=_as_int(raw.get("maxSide", base.max_side), base.max_side),
            use_max_side=_as_bool(raw.get("useMaxSide"), base.use_max_side),
            min_side=_as_int(raw.get("minSize", base.min_side), base.min_side),
            use_min_size=_as_bool(raw.get("useMinSize"), base.use_min_size),
            quality=base.quality,
            max_mb=_as_float(raw.get("maxMb", base.max_mb), base.max_mb),
            use_max_mb=_as_bool(raw.get("useMaxMb"), base.use_max_mb),
        )
