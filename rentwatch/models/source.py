# rentwatch/models/source.py

"""Source sites and their per-source selector configuration."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rentwatch.config.settings import Settings

_FIELDS: tuple[str, ...] = (
    "item",
    "name",
    "price",
    "sqft",
    "image",
    "availability_include",
    "availability_exclude",
)


@dataclass(frozen=True)
class SelectorConfig:
    """Ordered selector lists and availability keywords for one source."""

    item: tuple[str, ...] = ()
    name: tuple[str, ...] = ()
    price: tuple[str, ...] = ()
    sqft: tuple[str, ...] = ()
    image: tuple[str, ...] = ()
    availability_include: tuple[str, ...] = ()
    availability_exclude: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SelectorConfig":
        """Build from a JSON mapping; unknown keys are ignored."""
        values = {
            key: tuple(str(v) for v in raw.get(key, []) or [])
            for key in _FIELDS
        }
        return cls(**values)

    @classmethod
    def for_source(
        cls,
        source_id: str,
        path: Path | None = None,
    ) -> "SelectorConfig":
        """Load selectors for *source_id*, merged field-by-field over defaults."""
        with open(path or Settings.SELECTORS_PATH, encoding="utf-8") as f:
            all_selectors: dict[str, Any] = json.load(f)
        merged: dict[str, Any] = dict(all_selectors.get("default", {}))
        override: dict[str, Any] = all_selectors.get(
            source_id.strip().lower(), {}
        )
        merged.update({k: v for k, v in override.items() if v})
        return cls.from_dict(merged)


@dataclass(frozen=True)
class Source:
    """A named listing site. Static configuration, read-only at runtime."""

    id: str
    label: str
    url: str
    selectors: SelectorConfig = field(default_factory=SelectorConfig)

    @classmethod
    def from_registry(cls, entry: dict[str, str]) -> "Source":
        """Build a Source from a ``Settings.AVAILABLE_SOURCES`` entry."""
        return cls(
            id=entry["id"],
            label=entry.get("label", entry["id"]),
            url=entry["url"],
            selectors=SelectorConfig.for_source(entry["id"]),
        )
