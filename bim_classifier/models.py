"""
Data models and type definitions for the BIM classifier.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import PartialBatchFailure

if TYPE_CHECKING:
    from .llm.schemas import ClassificationSuggestion


DIMENSION_NAMES: Tuple[str, ...] = ("length", "width", "height", "diameter")


@dataclass(frozen=True)
class Element:
    """Read-only snapshot of a BIM element, owned by the element store."""

    id: int
    category: Optional[str]
    family: Optional[str] = None
    type: Optional[str] = None
    material: Optional[str] = None
    location_type: Optional[str] = None
    spec: Optional[str] = None
    external_id: Optional[str] = None
    project_id: Optional[str] = None
    length_mm: Optional[Decimal] = None
    width_mm: Optional[Decimal] = None
    height_mm: Optional[Decimal] = None
    diameter_mm: Optional[Decimal] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def dimension(self, name: str) -> Optional[Decimal]:
        """Return the named dimension in millimetres."""
        return getattr(self, f"{name}_mm")

    @property
    def pattern_key(self) -> "PatternKey":
        return PatternKey(
            category=self.category,
            family=self.family,
            type=self.type,
            material=self.material,
            location_type=self.location_type,
        )


@dataclass(frozen=True)
class PatternKey:
    """Exact grouping key of a pattern. None is a value of its own."""

    category: Optional[str]
    family: Optional[str]
    type: Optional[str]
    material: Optional[str]
    location_type: Optional[str]

    def as_tuple(self) -> Tuple[Optional[str], ...]:
        return (
            self.category,
            self.family,
            self.type,
            self.material,
            self.location_type,
        )

    @property
    def label(self) -> str:
        """Human-readable key, for logs only (not unique)."""
        return "_".join("<null>" if part is None else part for part in self.as_tuple())


@dataclass(frozen=True)
class DimensionRange:
    """Min/max/avg of one dimension over the non-null values of a pattern."""

    min: Optional[Decimal] = None
    max: Optional[Decimal] = None
    avg: Optional[Decimal] = None

    @property
    def is_empty(self) -> bool:
        return self.min is None and self.max is None and self.avg is None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "min": None if self.min is None else str(self.min),
            "max": None if self.max is None else str(self.max),
            "avg": None if self.avg is None else str(self.avg),
        }


@dataclass(frozen=True)
class DimensionStatistics:
    """Statistical summary of dimensions for a pattern group."""

    length: DimensionRange = field(default_factory=DimensionRange)
    width: DimensionRange = field(default_factory=DimensionRange)
    height: DimensionRange = field(default_factory=DimensionRange)
    diameter: DimensionRange = field(default_factory=DimensionRange)

    def to_dict(self) -> Dict[str, Dict[str, Optional[str]]]:
        return {name: getattr(self, name).to_dict() for name in DIMENSION_NAMES}


@dataclass(frozen=True)
class Pattern:
    """Aggregated group of elements sharing an identical PatternKey."""

    key: PatternKey
    element_count: int
    element_ids: Tuple[int, ...]
    sample_elements: Tuple[Element, ...]
    dimension_stats: DimensionStatistics
    fingerprint: str

    @property
    def pattern_key(self) -> str:
        return self.key.label


@dataclass
class ExecutionContext:
    """Per-call execution context passed to every downstream collaborator."""

    execution_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    initiated_by: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    def cancel(self) -> None:
        """Signal that no further work should be dispatched."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class BatchState(Enum):
    """Lifecycle of a batch inside the orchestrator."""

    RECEIVED = "received"
    AGGREGATED = "aggregated"
    CACHE_CHECKED = "cache_checked"
    DISPATCHING = "dispatching"
    MERGED = "merged"
    COMPLETED = "completed"


@dataclass
class BatchResult:
    """Outcome of a batch classification call."""

    total_elements: int
    total_patterns: int
    cached_patterns: int
    newly_classified_patterns: int
    suggestions_by_fingerprint: Dict[str, "ClassificationSuggestion"] = field(
        default_factory=dict
    )
    pattern_mapping: Dict[str, List[int]] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def suggestions(self) -> List["ClassificationSuggestion"]:
        return list(self.suggestions_by_fingerprint.values())

    @property
    def failed_patterns(self) -> int:
        return len(self.failures)

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailure if any pattern failed classification."""
        if self.failures:
            raise PartialBatchFailure(
                f"{len(self.failures)} of {self.total_patterns} patterns failed classification",
                failures=self.failures,
            )


@dataclass(frozen=True)
class CacheStatistics:
    """Hit/miss counters and size of the classification cache."""

    hit_count: int = 0
    miss_count: int = 0
    total_items: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hit_count + self.miss_count
        if lookups == 0:
            return 0.0
        return self.hit_count / lookups
