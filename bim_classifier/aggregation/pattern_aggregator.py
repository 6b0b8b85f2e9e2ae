"""
Pattern aggregation for BIM elements.

This module groups raw elements into canonical patterns so that tens of
thousands of elements collapse into a few dozen classification requests.
Each pattern carries a bounded sample, null-safe dimension statistics and a
deterministic fingerprint used as its cache key.
"""

import hashlib
import json
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Sequence

from ..exceptions import ValidationError
from ..models import (
    DIMENSION_NAMES,
    DimensionRange,
    DimensionStatistics,
    Element,
    ExecutionContext,
    Pattern,
    PatternKey,
)

if TYPE_CHECKING:
    from ..database.element_store import ElementStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 50
FINGERPRINT_LENGTH = 64


def compute_fingerprint(key: PatternKey) -> str:
    """
    Compute the cache fingerprint of a pattern key.

    The key is encoded as a JSON array so that None (``null``) stays distinct
    from an empty string and no separator can be smuggled in through a value.

    Args:
        key: Grouping key of the pattern

    Returns:
        64-character lowercase hex SHA-256 digest
    """
    canonical = json.dumps(list(key.as_tuple()), ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_dimension_range(values: Iterable[Any]) -> DimensionRange:
    """Reduce one dimension over its non-null values; all-null gives an empty range."""
    present = [_to_decimal(v) for v in values if v is not None]
    if not present:
        return DimensionRange()
    return DimensionRange(
        min=min(present),
        max=max(present),
        avg=sum(present) / Decimal(len(present)),
    )


def compute_dimension_statistics(elements: Sequence[Element]) -> DimensionStatistics:
    """Compute per-dimension min/max/avg over the given elements."""
    ranges = {
        name: compute_dimension_range(e.dimension(name) for e in elements)
        for name in DIMENSION_NAMES
    }
    return DimensionStatistics(**ranges)


def build_pattern(
    key: PatternKey,
    elements: Sequence[Element],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> Pattern:
    """Build a Pattern from every element sharing ``key``."""
    ordered = sorted(elements, key=lambda e: e.id)
    return Pattern(
        key=key,
        element_count=len(ordered),
        element_ids=tuple(e.id for e in ordered),
        sample_elements=tuple(ordered[:sample_size]),
        dimension_stats=compute_dimension_statistics(ordered),
        fingerprint=compute_fingerprint(key),
    )


def group_elements(
    elements: Iterable[Element], sample_size: int = DEFAULT_SAMPLE_SIZE
) -> List[Pattern]:
    """Group raw element rows into patterns in-process."""
    groups: "OrderedDict[PatternKey, List[Element]]" = OrderedDict()
    for element in elements:
        groups.setdefault(element.pattern_key, []).append(element)

    return [build_pattern(key, members, sample_size) for key, members in groups.items()]


def sort_patterns(patterns: Iterable[Pattern]) -> List[Pattern]:
    """Largest patterns first, ties broken by fingerprint."""
    return sorted(patterns, key=lambda p: (-p.element_count, p.fingerprint))


class PatternAggregator:
    """
    Groups elements by classification-relevant attributes.

    Uses the element store's server-side grouping when it offers one and
    falls back to grouping raw rows in-process otherwise. Store failures
    propagate unchanged; this component never retries.
    """

    def __init__(
        self,
        element_store: "ElementStore",
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        prefer_server_side: bool = True,
    ) -> None:
        if sample_size < 1:
            raise ValidationError(
                "sample_size must be positive", field="sample_size", value=sample_size
            )

        self.element_store = element_store
        self.sample_size = sample_size
        self.prefer_server_side = prefer_server_side

    @property
    def uses_server_side_grouping(self) -> bool:
        return self.prefer_server_side and callable(
            getattr(self.element_store, "aggregate_patterns", None)
        )

    async def aggregate(
        self,
        element_ids: Sequence[int],
        sample_size: Optional[int] = None,
        context: Optional[ExecutionContext] = None,
    ) -> List[Pattern]:
        """
        Aggregate the given elements into distinct patterns.

        Args:
            element_ids: Element identifiers to aggregate
            sample_size: Per-pattern sample bound (defaults to the instance value)
            context: Execution context of the calling batch

        Returns:
            Patterns partitioning exactly the resolved elements

        Raises:
            ValidationError: If sample_size is given and not positive
        """
        if sample_size is not None and sample_size < 1:
            raise ValidationError(
                "sample_size must be positive", field="sample_size", value=sample_size
            )
        size = sample_size if sample_size is not None else self.sample_size
        ids = list(dict.fromkeys(element_ids))
        if not ids:
            return []

        if self.uses_server_side_grouping:
            patterns = await self.element_store.aggregate_patterns(ids, size)
            mode = "server-side"
        else:
            elements = await self.element_store.get_by_ids(ids)
            patterns = group_elements(elements, size)
            mode = "in-process"

        patterns = sort_patterns(patterns)
        logger.info(
            "Aggregated %d elements into %d patterns (%s)%s",
            sum(p.element_count for p in patterns),
            len(patterns),
            mode,
            f" [execution {context.execution_id}]" if context else "",
        )
        return patterns

    async def list_patterns(self, skip: int = 0, take: int = 1000) -> List[Pattern]:
        """Page through every distinct pattern in the store."""
        if skip < 0 or take < 1:
            raise ValidationError(
                "skip must be >= 0 and take must be >= 1",
                field="skip/take",
                value=(skip, take),
            )
        return await self.element_store.list_patterns(skip=skip, take=take)

    async def count_patterns(self) -> int:
        """Count distinct patterns in the store."""
        return await self.element_store.count_patterns()

