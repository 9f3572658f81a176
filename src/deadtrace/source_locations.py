"""
Source-location lookup for declared methods.

Locations come from debug symbols, which this package does not read itself.
Callers plug in a provider; returning ``None`` means "no location" and is
always acceptable.

A symbol export can be handed over as a JSON object keyed by ``Type.Method``::

    {
      "MyApp.Services.Calculator.Add": {
        "sourceFile": "src/Services/Calculator.cs",
        "declarationLine": 12,
        "bodyStartLine": 13,
        "bodyEndLine": 16
      }
    }
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol

from pydantic import TypeAdapter, ValidationError

from .errors import ConfigError
from .inventory_store import LocationModel
from .models import SourceLocation
from .safety import MethodDescriptor

logger = logging.getLogger(__name__)

_LOCATION_MAP = TypeAdapter(Dict[str, LocationModel])


class SourceLocationProvider(Protocol):
    def locate(self, method: MethodDescriptor, module_path: Path) -> Optional[SourceLocation]:
        ...


class NullSourceLocationProvider:
    """Used when no symbols are available: every method is unlocated."""

    def locate(self, method: MethodDescriptor, module_path: Path) -> Optional[SourceLocation]:
        return None


def _lookup_key(key: str) -> str:
    # Outer+Inner and Outer.Inner name the same nested type
    return key.replace("+", ".").casefold()


class MappingSourceLocationProvider:
    """Looks locations up by ``Type.Method`` key, e.g. from a symbol export.

    Keys ignore case and accept either nested-type separator. Overloads share
    one key, so they share one location.
    """

    def __init__(self, locations: Mapping[str, SourceLocation]):
        self._locations: Dict[str, SourceLocation] = {_lookup_key(k): v for k, v in locations.items()}

    def __len__(self) -> int:
        return len(self._locations)

    def locate(self, method: MethodDescriptor, module_path: Path) -> Optional[SourceLocation]:
        return self._locations.get(_lookup_key(f"{method.declaring_type}.{method.name}"))


def load_source_locations(path: str | Path) -> MappingSourceLocationProvider:
    """Read a ``Type.Method -> location`` JSON map into a provider.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ConfigError: the content is not a map of valid locations.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Source locations file not found: {p}")
    try:
        raw = _LOCATION_MAP.validate_json(p.read_bytes())
    except ValidationError as e:
        raise ConfigError(f"Invalid source locations file {p}: {e}") from e
    provider = MappingSourceLocationProvider({
        key: SourceLocation(loc.sourceFile, loc.declarationLine, loc.bodyStartLine, loc.bodyEndLine)
        for key, loc in raw.items()
    })
    logger.info("Loaded %d source locations from %s", len(provider), p)
    return provider
