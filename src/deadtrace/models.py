"""
Core data model: declared methods, executed-method sets and redundancy reports.

Records are immutable once extracted. The report is built fresh per analysis run
and only grows by insertion during the comparison pass.
"""
from __future__ import annotations

from collections.abc import Set as AbstractSet
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional


class SafetyTier(str, Enum):
    DO_NOT_REMOVE = "DoNotRemove"
    LOW = "LowConfidence"
    MEDIUM = "MediumConfidence"
    HIGH = "HighConfidence"

    @property
    def rank(self) -> int:
        """Removal confidence order; DoNotRemove ranks below everything."""
        return _TIER_RANK[self]

    @classmethod
    def from_label(cls, label: str) -> "SafetyTier":
        """Accept ``high``/``medium``/``low`` as well as the enum values."""
        key = label.strip().lower()
        for tier in cls:
            if key in (tier.value.lower(), tier.value.lower().replace("confidence", "")):
                return tier
        raise ValueError(f"Unknown confidence level: {label!r}")


_TIER_RANK = {
    SafetyTier.DO_NOT_REMOVE: 0,
    SafetyTier.LOW: 1,
    SafetyTier.MEDIUM: 2,
    SafetyTier.HIGH: 3,
}


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    PROTECTED = "protected"
    INTERNAL = "internal"
    PROTECTED_INTERNAL = "protected-internal"


class MemberAccess(int, Enum):
    """ECMA-335 MemberAccess values (MethodAttributes & 0x7)."""

    COMPILER_CONTROLLED = 0
    PRIVATE = 1
    FAMILY_AND_ASSEMBLY = 2
    ASSEMBLY = 3
    FAMILY = 4
    FAMILY_OR_ASSEMBLY = 5
    PUBLIC = 6

    @property
    def visibility(self) -> Visibility:
        return _ACCESS_VISIBILITY.get(self, Visibility.PRIVATE)


_ACCESS_VISIBILITY = {
    MemberAccess.PUBLIC: Visibility.PUBLIC,
    MemberAccess.PRIVATE: Visibility.PRIVATE,
    MemberAccess.FAMILY: Visibility.PROTECTED,
    MemberAccess.ASSEMBLY: Visibility.INTERNAL,
    MemberAccess.FAMILY_OR_ASSEMBLY: Visibility.PROTECTED_INTERNAL,
}


@dataclass(frozen=True)
class SourceLocation:
    source_file: str
    declaration_line: int
    body_start_line: int
    body_end_line: int


@dataclass(frozen=True)
class MethodRecord:
    module_name: str
    type_name: str
    method_name: str
    signature: str
    visibility: Visibility
    safety_tier: SafetyTier
    location: Optional[SourceLocation] = None

    @property
    def key(self) -> str:
        """Identity used for matching against execution data (overloads collapse)."""
        return f"{self.type_name}.{self.method_name}"

    @property
    def has_source_location(self) -> bool:
        return self.location is not None


class MethodInventory:
    """Ordered collection of method records, duplicates permitted."""

    def __init__(self, methods: Optional[Iterable[MethodRecord]] = None):
        self._methods: List[MethodRecord] = list(methods or [])

    @property
    def methods(self) -> List[MethodRecord]:
        return list(self._methods)

    def add(self, method: MethodRecord) -> None:
        if method is None:
            raise ValueError("method is required")
        self._methods.append(method)

    def extend(self, methods: Iterable[MethodRecord]) -> None:
        if methods is None:
            raise ValueError("methods is required")
        for method in methods:
            self.add(method)

    def by_module(self) -> Dict[str, List[MethodRecord]]:
        grouped: Dict[str, List[MethodRecord]] = {}
        for method in self._methods:
            grouped.setdefault(method.module_name, []).append(method)
        return grouped

    def by_tier(self, tier: SafetyTier) -> List[MethodRecord]:
        return [m for m in self._methods if m.safety_tier == tier]

    def __iter__(self) -> Iterator[MethodRecord]:
        return iter(self._methods)

    def __len__(self) -> int:
        return len(self._methods)


class ExecutedMethodSet(AbstractSet):
    """Case-insensitive set of canonical keys observed executing.

    The first spelling added for a key is the one kept for iteration.
    """

    def __init__(self, keys: Iterable[str] = ()):
        self._keys: Dict[str, str] = {}
        self.update(keys)

    @classmethod
    def _from_iterable(cls, it: Iterable[str]) -> "ExecutedMethodSet":
        return cls(it)

    def add(self, key: str) -> None:
        if not key:
            return
        self._keys.setdefault(key.casefold(), key)

    def update(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.add(key)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.casefold() in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return f"ExecutedMethodSet({sorted(self._keys.values())!r})"


@dataclass
class UnusedMethodRecord:
    method: MethodRecord
    dependencies: List[str] = field(default_factory=list)

    @property
    def file_path(self) -> Optional[str]:
        return self.method.location.source_file if self.method.location else None

    @property
    def line_number(self) -> Optional[int]:
        return self.method.location.declaration_line if self.method.location else None

    @property
    def tier(self) -> SafetyTier:
        return self.method.safety_tier


@dataclass(frozen=True)
class ReportStatistics:
    total: int
    high_confidence: int
    medium_confidence: int
    low_confidence: int


@dataclass
class RedundancyReport:
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    analyzed_modules: List[str] = field(default_factory=list)
    trace_scenarios: List[str] = field(default_factory=list)
    _unused: List[UnusedMethodRecord] = field(default_factory=list, repr=False)

    @property
    def unused_methods(self) -> List[UnusedMethodRecord]:
        return list(self._unused)

    def add_unused(self, unused: UnusedMethodRecord) -> None:
        if unused is None:
            raise ValueError("unused method is required")
        if unused.tier == SafetyTier.DO_NOT_REMOVE:
            raise ValueError(f"{unused.method.key} is marked DoNotRemove and cannot be reported")
        self._unused.append(unused)

    def by_tier(self) -> Dict[SafetyTier, List[UnusedMethodRecord]]:
        grouped: Dict[SafetyTier, List[UnusedMethodRecord]] = {}
        for unused in self._unused:
            grouped.setdefault(unused.tier, []).append(unused)
        return grouped

    @property
    def high_confidence(self) -> List[UnusedMethodRecord]:
        return [u for u in self._unused if u.tier == SafetyTier.HIGH]

    @property
    def medium_confidence(self) -> List[UnusedMethodRecord]:
        return [u for u in self._unused if u.tier == SafetyTier.MEDIUM]

    @property
    def low_confidence(self) -> List[UnusedMethodRecord]:
        return [u for u in self._unused if u.tier == SafetyTier.LOW]

    def statistics(self) -> ReportStatistics:
        return ReportStatistics(
            total=len(self._unused),
            high_confidence=len(self.high_confidence),
            medium_confidence=len(self.medium_confidence),
            low_confidence=len(self.low_confidence),
        )

    def filtered(self, min_tier: SafetyTier) -> "RedundancyReport":
        """Copy of this report keeping only tiers at or above ``min_tier``."""
        report = RedundancyReport(
            generated_at=self.generated_at,
            analyzed_modules=list(self.analyzed_modules),
            trace_scenarios=list(self.trace_scenarios),
        )
        for unused in self._unused:
            if unused.tier.rank >= max(min_tier.rank, SafetyTier.LOW.rank):
                report.add_unused(unused)
        return report


@dataclass(frozen=True)
class TraceResult:
    trace_file_path: str
    scenario_name: str
    start_time: datetime
    end_time: datetime
    is_successful: bool
    error_message: Optional[str] = None

    @property
    def duration(self):
        return self.end_time - self.start_time

    @property
    def trace_file_exists(self) -> bool:
        return bool(self.trace_file_path) and Path(self.trace_file_path).is_file()
